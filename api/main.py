from fastapi import FastAPI

from jobs import JobQueue
from .queues import router as queues_router
from .system import router as system_router

def create_app(job_queue: JobQueue) -> FastAPI:
    """Build the admin API around a job queue."""
    app = FastAPI(
        title="Marketplace Reconciler API",
        description="Queue administration for the marketplace event reconciler",
        version="1.0.0"
    )
    app.state.job_queue = job_queue

    # Add routes
    app.include_router(system_router)
    app.include_router(queues_router)

    @app.get("/")
    async def root():
        return {
            "name": "Marketplace Reconciler API",
            "version": "1.0.0",
            "status": "running"
        }

    return app
