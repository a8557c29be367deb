from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fee_ledger.api.v1.fee_definitions.router import router as fee_definitions_router
from fee_ledger.api.v1.ledgers.router import router as ledgers_router
from fee_ledger.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Fee Ledger")

    # CORS: the host school platform calls this API from its own frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(fee_definitions_router)
    app.include_router(ledgers_router)

    return app


app = create_app()
