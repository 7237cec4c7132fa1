# main.py
import logging
import os
import shutil
import uuid
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

import config
from backend import DataManager
from entities import ENTITY_TYPES, InvalidAttributes
from errors import AIResponseError, AIUnavailableError, DataAlchemistError, FileParseError, RuleFormatError
from validation import is_export_ready, summarize

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Data Alchemist")

# Enable CORS for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global DataManager instance to persist data across requests
global_data_manager: Optional[DataManager] = None


def get_data_manager() -> DataManager:
    global global_data_manager
    if global_data_manager is None:
        global_data_manager = DataManager()
    return global_data_manager


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


_ERROR_STATUS = {
    FileParseError: 400,
    RuleFormatError: 400,
    AIUnavailableError: 503,
    AIResponseError: 502,
}


@app.exception_handler(DataAlchemistError)
async def data_alchemist_error_handler(request: Request, exc: DataAlchemistError):
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(status, str(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return error_response(400, str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Error in %s %s", request.method, request.url.path)
    return error_response(500, str(exc))


# --------- Serialisation helpers ---------

def _jsonable_value(value: Any) -> Any:
    if isinstance(value, InvalidAttributes):
        return value.to_dict()
    return value


def _jsonable_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{k: _jsonable_value(v) for k, v in row.items()} for row in rows]


def _check_entity_type(entity_type: str) -> Optional[JSONResponse]:
    if entity_type not in ENTITY_TYPES:
        return error_response(404, f"Unknown entity type: {entity_type}")
    return None


def validation_payload(dm: DataManager) -> Dict[str, Any]:
    issues = dm.validate_all()
    return {
        "errors": [issue.to_dict() for issue in issues],
        "summary": {
            "total_clients": len(dm.clients),
            "total_workers": len(dm.workers),
            "total_tasks": len(dm.tasks),
            "total_rules": len(dm.rules),
            **summarize(issues),
            "export_ready": is_export_ready(issues),
        },
    }


def data_payload(dm: DataManager) -> Dict[str, Any]:
    return {entity_type: _jsonable_rows(dm.rows_with_issues(entity_type)) for entity_type in ENTITY_TYPES}


def save_upload_file(upload_file: UploadFile) -> str:
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    file_id = str(uuid.uuid4())
    file_path = os.path.join(config.UPLOAD_DIR, f"{file_id}_{os.path.basename(upload_file.filename or 'upload')}")
    with open(file_path, "wb") as buffer:
        shutil.copyfileobj(upload_file.file, buffer)
    return file_path


# --------- Data ---------

@app.post("/upload")
async def upload_files(
    clients: Optional[UploadFile] = File(None),
    workers: Optional[UploadFile] = File(None),
    tasks: Optional[UploadFile] = File(None),
):
    uploads = {"clients": clients, "workers": workers, "tasks": tasks}
    if not any(uploads.values()):
        return error_response(400, "Upload at least one of clients, workers or tasks")

    dm = get_data_manager()
    dm.load_many([
        (save_upload_file(upload), upload.filename, entity_type)
        for entity_type, upload in uploads.items()
        if upload is not None
    ])

    return {"status": "success", "data": data_payload(dm), **validation_payload(dm)}


@app.get("/data")
async def get_data():
    dm = get_data_manager()
    return {"status": "success", "data": data_payload(dm), **validation_payload(dm)}


@app.put("/data/{entity_type}")
async def replace_table(entity_type: str, rows: List[Dict[str, Any]] = Body(...)):
    invalid = _check_entity_type(entity_type)
    if invalid:
        return invalid
    dm = get_data_manager()
    dm.load_table(entity_type, rows)
    return {"status": "success", "data": data_payload(dm), **validation_payload(dm)}


@app.delete("/data/{entity_type}")
async def clear_table(entity_type: str):
    invalid = _check_entity_type(entity_type)
    if invalid:
        return invalid
    dm = get_data_manager()
    dm.clear_table(entity_type)
    return {"status": "success", **validation_payload(dm)}


@app.patch("/data/{entity_type}/{row_index}")
async def update_cell(entity_type: str, row_index: int, request: Dict[str, Any] = Body(...)):
    invalid = _check_entity_type(entity_type)
    if invalid:
        return invalid
    if "field" not in request or "value" not in request:
        return error_response(400, "Body must contain 'field' and 'value'")
    dm = get_data_manager()
    try:
        row = dm.update_cell(entity_type, row_index, request["field"], request["value"])
    except IndexError as e:
        return error_response(404, str(e))
    return {"status": "success", "row": _jsonable_rows([row])[0], **validation_payload(dm)}


@app.get("/validate")
async def validate():
    return {"status": "success", **validation_payload(get_data_manager())}


# --------- Rules ---------

@app.get("/rules")
async def list_rules():
    return {"status": "success", "rules": [rule.to_dict() for rule in get_data_manager().rules]}


@app.post("/rules")
async def add_rule(rule: Dict[str, Any] = Body(...)):
    dm = get_data_manager()
    added = dm.add_rule(rule)
    return {"status": "success", "rule": added.to_dict(), **validation_payload(dm)}


@app.delete("/rules/{rule_id}")
async def remove_rule(rule_id: str):
    dm = get_data_manager()
    if not dm.remove_rule(rule_id):
        return error_response(404, f"No rule with id {rule_id}")
    return {"status": "success", **validation_payload(dm)}


# --------- AI ---------

@app.post("/ai/generate_rule")
async def ai_generate_rule(request: Dict[str, Any] = Body(...)):
    user_input = str(request.get("input", "")).strip()
    if not user_input:
        return error_response(400, "No input provided")
    dm = get_data_manager()
    if request.get("add"):
        rule = dm.add_rule_from_nl(user_input)
        return {"status": "success", "rule": rule.to_dict(), **validation_payload(dm)}
    rule = dm.generate_rule_from_natural_language(user_input)
    return {"status": "success", "rule": rule.to_dict()}


@app.get("/ai/rule_recommendations")
async def ai_rule_recommendations():
    rules = get_data_manager().get_recommended_rules()
    return {"status": "success", "rules": [rule.to_dict() for rule in rules]}


@app.get("/ai/analysis")
async def ai_analysis():
    return {"status": "success", "findings": get_data_manager().analyze()}


@app.get("/ai/suggest_corrections")
async def suggest_corrections():
    corrections = get_data_manager().suggest_corrections()
    return {"status": "success", "corrections": [c.to_dict() for c in corrections]}


@app.post("/corrections/apply")
async def apply_correction(correction: Dict[str, Any] = Body(...)):
    dm = get_data_manager()
    applied = dm.apply_correction(correction)
    return {"status": "success", "correction": applied.to_dict(), "data": data_payload(dm), **validation_payload(dm)}


# --------- Priorities & export ---------

@app.post("/priorities")
async def set_priorities(priorities: Dict[str, Any] = Body(...)):
    return {"status": "success", "priorities": get_data_manager().set_priorities(priorities)}


@app.post("/export")
async def export_data():
    dm = get_data_manager()
    if dm.data.is_empty:
        return error_response(400, "No data loaded. Please upload files first.")

    paths = dm.export_all(config.EXPORT_DIR)
    payload = validation_payload(dm)
    response = {
        "status": "success",
        "message": f"Data exported successfully to {config.EXPORT_DIR}",
        "export_directory": config.EXPORT_DIR,
        "files": [{"name": os.path.basename(p), "path": p} for p in paths],
        "summary": payload["summary"],
    }
    if not payload["summary"]["export_ready"]:
        response["warning"] = f"Exported with {payload['summary']['errors']} unresolved error(s)"
    return response


@app.get("/download/{filename}")
async def download_file(filename: str):
    file_path = os.path.join(config.EXPORT_DIR, os.path.basename(filename))
    if not os.path.exists(file_path):
        return error_response(404, "File not found")
    return FileResponse(path=file_path, media_type="application/octet-stream", filename=os.path.basename(filename))


@app.post("/export_download")
async def export_download():
    dm = get_data_manager()
    if dm.data.is_empty:
        return error_response(400, "No data loaded. Please upload files first.")
    files = dm.export_payloads()
    payload = validation_payload(dm)
    return {
        "status": "success",
        "message": f"Prepared {len(files)} files for download",
        "files": files,
        "summary": payload["summary"],
    }
