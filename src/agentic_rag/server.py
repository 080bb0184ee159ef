"""
FastAPI adapter exposing the answering pipeline over HTTP.

Endpoints:
    POST /api/ask     {"question": "..."} -> {"trace": {...}}
    GET  /api/health  -> {"status": "ok"}
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .pipeline import Agent, run_agent

logger = logging.getLogger(__name__)


class AskRequest(BaseModel):
    question: Optional[str] = None


def create_app(agent: Agent) -> FastAPI:
    """Build the HTTP app around an already-constructed agent."""
    app = FastAPI(
        title="agentic-rag API",
        description="Question answering with hybrid retrieval, tools and claim verification",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173", "http://127.0.0.1:5173"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health_check():
        return {"status": "ok"}

    # runs in the FastAPI threadpool
    @app.post("/api/ask")
    def ask(request: AskRequest):
        question = (request.question or "").strip()
        if not question:
            return JSONResponse(status_code=400, content={"error": "question is required"})
        try:
            trace = run_agent(question, agent)
        except Exception as exc:
            logger.exception("Failed to answer %r", question)
            return JSONResponse(status_code=500, content={"error": str(exc)})
        return {"trace": trace.to_dict()}

    return app
