"""Main FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sleekinvoices.config import settings
from sleekinvoices.quickbooks import routes as quickbooks_routes

# Create FastAPI app
app = FastAPI(
    title="SleekInvoices API",
    description="Invoicing with two-way QuickBooks Online sync",
    version="0.4.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    quickbooks_routes.router,
    prefix=f"{settings.API_V1_PREFIX}/quickbooks",
    tags=["QuickBooks"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sleekinvoices.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
