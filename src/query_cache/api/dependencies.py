"""Dependency injection configuration for FastAPI app.

Uses FastAPI's app.state pattern for storing service instances.

Pattern:
    - Services stored in app.state during lifespan
    - Dependency functions retrieve from request.app.state
    - One QueryClient per app, no global mutable state
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request

from query_cache.config import configure_logging
from query_cache.handlers import PostListHandler
from query_cache.protocols import PostsSource
from query_cache.repositories import HttpPostsRepository
from query_cache.services import QueryClient

logger = logging.getLogger(__name__)


def get_query_client(request: Request) -> QueryClient:
    """Dependency injection for QueryClient from app.state.

    Args:
        request: FastAPI Request object

    Returns:
        The QueryClient instance from app.state

    Raises:
        RuntimeError: If client is not initialized
    """
    client = getattr(request.app.state, "query_client", None)
    if client is None:
        raise RuntimeError("QueryClient not initialized. Check lifespan setup.")
    return client


def get_handler(request: Request) -> PostListHandler:
    """Dependency injection for PostListHandler from app.state.

    Args:
        request: FastAPI Request object

    Returns:
        The PostListHandler instance from app.state

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "post_list_handler", None)
    if handler is None:
        raise RuntimeError("PostListHandler not initialized. Check lifespan setup.")
    return handler


def get_posts_source(request: Request) -> PostsSource:
    """Dependency injection for the posts backend from app.state."""
    source = getattr(request.app.state, "posts_source", None)
    if source is None:
        raise RuntimeError("Posts source not initialized. Check lifespan setup.")
    return source


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app.

    Initializes all layers and stores in app.state:
    1. Repository (posts backend) - app.state.posts_source
    2. Query client (cache) - app.state.query_client
    3. Handler (post list) - app.state.post_list_handler, mounted

    Args:
        app: The FastAPI application instance

    Yields:
        None

    Cleanup:
        Unmounts the handler, closes the client and the HTTP connection pool
    """
    configure_logging()

    repository = HttpPostsRepository.create()
    query_client = QueryClient.create()
    handler = PostListHandler(query_client=query_client, source=repository)
    handler.mount()

    app.state.posts_source = repository
    app.state.query_client = query_client
    app.state.post_list_handler = handler

    logger.info("Query client initialized (backend=%s)", repository.base_url)
    logger.info("Cache settings: %s", query_client.cache.get_stats())

    yield

    handler.unmount()
    await query_client.close()
    await repository.close()

    del app.state.post_list_handler
    del app.state.query_client
    del app.state.posts_source
    logger.info("Query client shut down")


# Type aliases for cleaner dependency injection
HandlerDep = Annotated[PostListHandler, Depends(get_handler)]
ClientDep = Annotated[QueryClient, Depends(get_query_client)]
SourceDep = Annotated[PostsSource, Depends(get_posts_source)]
