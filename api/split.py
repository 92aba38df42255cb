# api/split.py
# Vercel picks up a Flask/Werkzeug WSGI app named `app`.
# Endpoints:
#   - POST /api/split        -> split a pg_dump schema into objects
#   - GET  /api/split        -> health
#
# Payload:
#    { "sql": "CREATE TABLE public.users (...); ALTER TABLE ONLY public.users ADD CONSTRAINT ..." }

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from flask import Flask, request, Response

# Ensure pgdump_splitter.py and pgdump_files.py are in the root or on PYTHONPATH in Vercel.
from pgdump_files import relative_object_path
from pgdump_splitter import ParsedObject, ParseResult, parse_dump

app = Flask(__name__)

# ---------- Helpers: serializing output ----------

def _optional_list(values: Optional[List[str]]) -> Optional[List[str]]:
    return list(values) if values is not None else None

def _object_to_dict(obj: ParsedObject) -> Dict[str, Any]:
    return {
        "kind": obj.kind.value,
        "schema": obj.schema,
        "name": obj.name,
        "qualified_name": obj.qualified_name,
        "path": relative_object_path(obj).as_posix(),
        "definition": obj.definition,
        "sequences": _optional_list(obj.sequences),
        "constraints": _optional_list(obj.constraints),
        "indexes": _optional_list(obj.indexes),
    }

def _result_to_json(result: ParseResult) -> Dict[str, Any]:
    return {
        "objects": [_object_to_dict(obj) for obj in result.objects],
        "residual": result.residual,
        "summary": result.counts_by_kind(),
    }

def _json_response(body: Dict[str, Any], status: int = 200) -> Response:
    return Response(response=json.dumps(body), status=status, mimetype="application/json")

# ---------- CORS ----------

def _corsify(resp: Response) -> Response:
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    return resp

@app.after_request
def add_cors_headers(resp: Response):
    return _corsify(resp)

@app.route("/", methods=["OPTIONS"])
def options_root():
    return Response(status=204)

# ---------- Routes ----------

@app.route("/", methods=["GET"])
def health() -> Response:
    return _json_response({"ok": True})

@app.route("/", methods=["POST"])
def split() -> Response:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return _json_response({"error": "Invalid JSON"}, status=400)

    if not isinstance(payload, dict):
        return _json_response({"error": "JSON object expected"}, status=400)

    sql = payload.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        return _json_response({"error": "No dump provided (use `sql`)"}, status=400)

    try:
        result = parse_dump(sql)
    except Exception as e:
        # Return a concise error to the caller; avoid leaking internals
        return _json_response({"error": "parse_dump failed", "detail": str(e)}, status=500)

    return _json_response(_result_to_json(result))

# Map the function path too (Vercel passes the full path to the app)
@app.route("/api/split", methods=["OPTIONS"])
def options_split():
    return Response(status=204)

@app.route("/api/split", methods=["GET"])
def health_alias():
    return health()

@app.route("/api/split", methods=["POST"])
def split_alias():
    return split()
