"""REST API exposing the document query service."""

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__, core
from ..config import ConfigurationError
from ..models import ListDocumentsResponse

app = FastAPI(
    title="notedown",
    description="Query Markdown notes by frontmatter",
    version=__version__,
)

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ListDocumentsRequest(BaseModel):
    """Body of ``POST /api/documents``."""
    filter: dict[str, Any] | None = None
    ordered: bool = False


class HealthResponse(BaseModel):
    status: str
    version: str
    workspace: str | None = None


@app.post("/api/documents", response_model=ListDocumentsResponse)
async def list_documents(request: ListDocumentsRequest | None = None):
    """List documents whose frontmatter matches the filter.

    A malformed filter is not an HTTP error: the response carries no
    documents and an ``error`` message.
    """
    request = request or ListDocumentsRequest()
    try:
        return await core.list_documents(filter=request.filter, ordered=request.ordered)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Report the version and the workspace being served."""
    try:
        workspace = str(core.get_workspace_root())
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return HealthResponse(status="ok", version=__version__, workspace=workspace)


def main():
    """Run the API server."""
    import uvicorn

    from .._logging import configure_logging

    configure_logging()
    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8080"))

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
