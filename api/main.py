from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.chat_router import router as chat_router
from api.graph_router import router as graph_router
from core.config import settings

app = FastAPI(
    title="Hybrid RAG API",
    description="Vector search and knowledge-graph traversal behind one chat endpoint.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Include all the Routers ---
app.include_router(chat_router)
app.include_router(graph_router)

@app.get("/")
def read_root():
    return {"message": "Hybrid RAG API is running."}
