"""Quart application exposing ingest, query, inspection and reset endpoints."""
import logging
from typing import Optional

from quart import Quart, request, jsonify
import structlog

from ragcore import config
from ragcore.errors import ChunkingError, RAGError
from ragcore.extract import UnsupportedDocumentError, extract_text
from ragcore.llm_client import OllamaClient
from ragcore.rag.embedder import Embedder
from ragcore.rag.pipeline import RetrievalPipeline
from ragcore.rag.store import LocalVectorStore

logger = structlog.get_logger()


def configure_logging(level: str = None) -> None:
    """Configure structured JSON logging."""
    logging.basicConfig(format="%(message)s", level=(level or config.LOG_LEVEL).upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def build_pipeline() -> RetrievalPipeline:
    """Build the default pipeline: local index on disk, Ollama for embeddings and chat."""
    client = OllamaClient()
    return RetrievalPipeline(
        store=LocalVectorStore(),
        embedder=Embedder(client=client),
        chat_client=client,
    )


def _error_response(error: Exception, status: int):
    return jsonify({"error": str(error), "type": type(error).__name__}), status


async def _read_message():
    data = await request.get_json(silent=True)
    if not data or not isinstance(data.get("message"), str) or not data["message"].strip():
        return None
    return data["message"].strip()


def create_app(pipeline: Optional[RetrievalPipeline] = None) -> Quart:
    """Create the Quart application around a retrieval pipeline.

    Args:
        pipeline: Pipeline to serve (default: build_pipeline())

    Returns:
        Configured Quart app; the pipeline's store is opened before serving,
        and the store and Ollama connections are closed afterwards
    """
    pipeline = pipeline or build_pipeline()

    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES
    app.config["PIPELINE"] = pipeline

    @app.before_serving
    async def open_store():
        await pipeline.store.open()

    @app.after_serving
    async def close_store():
        await pipeline.store.close()
        await pipeline.aclose()

    @app.route("/health")
    async def health():
        """Liveness probe."""
        return "OK"

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check that Ollama is reachable and the index is open."""
        checks = {"status": "healthy", "ollama": False, "index": pipeline.store.stats()}

        if pipeline.chat_client is None:
            checks["status"] = "unhealthy"
            checks["error"] = "No chat client configured"
            return jsonify(checks), 503

        try:
            models = await pipeline.chat_client.list_models()
            checks["ollama"] = True
            checks["models"] = models
            return jsonify(checks), 200
        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)
            return jsonify(checks), 503

    @app.route("/chat", methods=["POST"])
    async def chat():
        """Plain chat without retrieval.

        Expects JSON body: {"message": "..."}
        Returns JSON: {"ai": "response text"}
        """
        message = await _read_message()
        if message is None:
            return jsonify({"error": "Message is required"}), 400

        if pipeline.chat_client is None:
            return jsonify({"error": "No chat client configured"}), 503

        try:
            response = await pipeline.chat_client.prompt(message)
        except Exception as e:
            logger.error("chat_endpoint_error", error=str(e), error_type=type(e).__name__)
            return _error_response(RAGError("chat", e), 500)

        return jsonify({"ai": response})

    @app.route("/chat-trained", methods=["POST"])
    async def chat_trained():
        """Chat grounded on the passages most similar to the message.

        Expects JSON body: {"message": "...", "top_k": 3}
        Returns JSON: {"response": "...", "context": "...", "passages": [...]}
        """
        data = await request.get_json(silent=True) or {}
        message = await _read_message()
        if message is None:
            return jsonify({"error": "Message is required"}), 400

        top_k = data.get("top_k")
        if top_k is not None and (
            isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1
        ):
            return jsonify({"error": "top_k must be a positive integer"}), 400

        logger.info("grounded_chat_request", message_length=len(message), top_k=top_k)

        answer = await pipeline.answer(message, top_k=top_k)
        return jsonify({
            "response": answer.response,
            "context": answer.context,
            "passages": answer.passages,
        })

    @app.route("/embed", methods=["POST"])
    async def embed():
        """Ingest an uploaded document (multipart field 'document').

        Accepts application/pdf and text/plain.
        Returns JSON: {"message": "...", "chunks": N, "stats": {...}}
        """
        files = await request.files
        upload = files.get("document")
        if upload is None:
            return jsonify({"error": "Document file is required"}), 400

        data = upload.read()
        if not data:
            return jsonify({"error": "Document file is required"}), 400

        try:
            text = extract_text(data, upload.mimetype)
        except (UnsupportedDocumentError, ChunkingError) as e:
            return _error_response(e, 400)

        logger.info(
            "document_upload_received",
            filename=upload.filename,
            content_type=upload.mimetype,
            text_length=len(text),
        )

        result = await pipeline.ingest(text)
        return jsonify({
            "message": "Document embedded successfully",
            "chunks": result.chunk_count,
            "stats": result.stats,
        })

    @app.route("/visualize-db", methods=["GET"])
    async def visualize_db():
        """List every stored record; pass ?vectors=false to omit vectors."""
        include_vectors = request.args.get("vectors", "true").lower() != "false"
        items = await pipeline.inspect(include_vectors=include_vectors)
        return jsonify({"items": items})

    @app.route("/reset-db", methods=["DELETE"])
    async def reset_db():
        """Drop every stored record."""
        await pipeline.reset()
        return jsonify({"message": "Vector index reset successfully"})

    @app.errorhandler(RAGError)
    async def rag_error(error: RAGError):
        logger.error(
            "request_failed",
            operation=error.operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        return _error_response(error, 500)

    @app.errorhandler(ValueError)
    async def bad_value(error: ValueError):
        return _error_response(error, 400)

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    async def too_large(error):
        return jsonify({"error": f"Upload exceeds {config.MAX_UPLOAD_BYTES} bytes"}), 413

    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(host="0.0.0.0", port=config.PORT)
