from flask import Flask, Response, jsonify, request
import asyncio
import json
import logging

from werkzeug.exceptions import HTTPException

from lecture_pipeline.config import PipelineConfig
from lecture_pipeline.errors import PipelineError
from lecture_pipeline.models import UploadedFile
from lecture_pipeline.tasks import UploadOrchestrator

logging.basicConfig(level=logging.INFO, format="%(message)s")

app = Flask(__name__)
config = PipelineConfig.from_env()
# Room for the multipart envelope and form fields around the largest file.
app.config["MAX_CONTENT_LENGTH"] = config.max_file_size + 1024 * 1024

# Built on first use so importing the app does not need cloud credentials.
orchestrator = None

STATUS_CODES = {
    "validation": 400,
    "not_found": 404,
    "storage": 502,
    "recognition": 502,
    "media": 502,
    "transcription": 502,
    "database": 500,
}


def get_orchestrator() -> UploadOrchestrator:
    global orchestrator
    if orchestrator is None:
        orchestrator = UploadOrchestrator.from_config(config)
    return orchestrator


def _flag(name: str) -> bool:
    return request.form.get(name, "false").lower() in ("1", "true", "yes", "on")


def _error_response(error: PipelineError):
    status = STATUS_CODES.get(error.kind, 500)
    logging.info(json.dumps({"event": "request_failed", "status": status, **error.to_dict()}))
    return jsonify({"error": error.to_dict()}), status


def _read_upload():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return None
    return UploadedFile(
        name=upload.filename,
        mime_type=upload.mimetype or "application/octet-stream",
        data=upload.read(),
    )


@app.errorhandler(PipelineError)
def handle_pipeline_error(error: PipelineError):
    return _error_response(error)


@app.route("/lectures/<lecture_id>/files", methods=["POST"])
def upload_file(lecture_id):
    file = _read_upload()
    if file is None:
        return jsonify({"error": {"kind": "validation", "message": "Missing 'file'"}}), 400
    logging.info(
        json.dumps({"event": "request", "lecture_id": lecture_id, "file": file.name})
    )
    pipeline = get_orchestrator()
    result = asyncio.run(
        pipeline.upload(
            file,
            lecture_id,
            is_primary=_flag("is_primary"),
            transcribe=_flag("transcribe"),
            prefer_remote=_flag("prefer_remote"),
        )
    )
    if not result.success:
        return _error_response(result.error)
    return (
        jsonify(
            {
                "file_id": result.file_id,
                "file_path": result.file_path,
                "url": pipeline.file_url(result.file_path),
            }
        ),
        201,
    )


@app.route("/lectures/<lecture_id>/files", methods=["GET"])
def list_files(lecture_id):
    files = asyncio.run(get_orchestrator().list_files(lecture_id))
    return jsonify([dict(record.to_dict(), url=url) for record, url in files])


@app.route("/files/<file_id>", methods=["DELETE"])
def delete_file(file_id):
    asyncio.run(get_orchestrator().delete_file(file_id))
    return "", 204


@app.route("/files/<file_id>/primary", methods=["POST"])
def set_primary(file_id):
    record = asyncio.run(get_orchestrator().set_primary(file_id))
    return jsonify(record.to_dict())


@app.route("/files/<file_id>/transcript", methods=["POST"])
def retranscribe(file_id):
    data = request.get_json(silent=True) or {}
    record = asyncio.run(
        get_orchestrator().retranscribe(file_id, prefer_remote=bool(data.get("prefer_remote")))
    )
    return jsonify(record.to_dict())


@app.route("/files/<file_id>/download", methods=["GET"])
def download(file_id):
    record, data = asyncio.run(get_orchestrator().download(file_id))
    return Response(
        data,
        mimetype=record.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{record.file_name}"'},
    )


@app.route("/files/<file_id>/summary", methods=["GET"])
def summary(file_id):
    max_length = request.args.get("max_length", type=int)
    text = asyncio.run(get_orchestrator().summarize_file(file_id, max_length))
    return jsonify({"summary": text})


@app.route("/transcribe", methods=["POST"])
def transcribe_preview():
    file = _read_upload()
    if file is None:
        return jsonify({"error": {"kind": "validation", "message": "Missing 'file'"}}), 400
    transcript = asyncio.run(
        get_orchestrator().preview_transcript(
            file.data, file.mime_type, file.name, prefer_remote=_flag("prefer_remote")
        )
    )
    return jsonify({"transcript": transcript})


@app.errorhandler(Exception)
def handle_unexpected(error):
    if isinstance(error, HTTPException):
        return error
    logging.exception("Error handling %s", request.path)
    return jsonify({"error": {"kind": "server", "message": str(error)}}), 500


if __name__ == "__main__":
    import os
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
