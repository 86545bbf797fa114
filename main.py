import logging
from contextlib import asynccontextmanager
from typing import Any, Dict
from fastapi import FastAPI
from strawberry.fastapi import GraphQLRouter
from routecache.schema import schema
from routecache.registry import DEFAULT_REGISTRY
from routecache.services.route_caching_provider import RouteCachingProvider

logger = logging.getLogger(__name__)

# Initialize services
registry = DEFAULT_REGISTRY
route_caching_provider = RouteCachingProvider(registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await route_caching_provider.initialize()
        logger.info(f"Route caching configured for {len(registry)} strategies")
        yield
    finally:
        logger.info("Closing route cache connection...")
        await route_caching_provider.close()


# Create context for GraphQL
async def get_context() -> Dict[str, Any]:
    return {
        "registry": registry,
        "route_caching_provider": route_caching_provider
    }


# Create FastAPI app
app = FastAPI(lifespan=lifespan)

# Add GraphQL route with context
graphql_app = GraphQLRouter(
    schema,
    context_getter=get_context,
)
app.include_router(graphql_app, prefix="/graphql")

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
