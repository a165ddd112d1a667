"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
INDEX_DIR = Path(os.getenv("INDEX_DIR", str(BASE_DIR / "index")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.2:3b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "llama3.2:3b")  # same model as chat
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))

# RAG parameters (character-based)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "100"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "3"))
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "8"))

# Vector index
INDEX_SCHEMA_VERSION = int(os.getenv("INDEX_SCHEMA_VERSION", "1"))

# HTTP
PORT = int(os.getenv("PORT", "3000"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
