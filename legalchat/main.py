# Run from project root: uvicorn legalchat.main:app --reload

import logging

from fastapi import FastAPI

from legalchat.api.routes import router
from legalchat.mcp.server import mcp_router

logging.basicConfig(level=logging.INFO)


app = FastAPI(title="Legal Assistant Backend")
app.include_router(router)
app.include_router(mcp_router, prefix="/mcp")
