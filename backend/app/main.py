from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.exceptions import register_exception_handlers
from app.startup import configure_startup_logging, run_startup_checks

from modules.scheduling.routers.scheduling_router import router as scheduling_router

settings = get_settings()
configure_startup_logging()

app = FastAPI(
    title="Restaurant Staff Scheduling API",
    description="""
    Shift scheduling and staffing allocation for multi-branch restaurants.

    ## Features

    * **Shift Templates** - Recurring shift definitions with per-role headcount
    * **Scheduled Shifts** - Templates placed on concrete branch dates
    * **Assignments** - Staff assignments with a status lifecycle
    * **Fulfillment & Conflicts** - Staffing gaps and double-booking checks
    * **Bulk Operations** - Bulk assign, copy week and publish
    * **Leave Reconciliation** - Approved leave applied to the schedule
    * **Schedule Locks** - Freeze a branch's schedule for a date range
    """,
    version="1.0.0",
)

# Register exception handlers for consistent error responses
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scheduling_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def startup_event():
    """Validate configuration and database on application startup"""
    run_startup_checks()


@app.get("/")
def read_root():
    return {"message": "Scheduling backend is running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
