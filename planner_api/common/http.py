# planner_api/common/http.py
from flask import jsonify


def fail(message="Bad Request", status=400, code=None, detail=None, errors=None):
    err = {"message": message}
    if code: err["code"] = code
    if detail: err["detail"] = detail
    if errors: err["errors"] = errors
    return jsonify({"success": False, "error": err}), status


def error_response(e):
    """Render an APIError (or any engine error) through the failure envelope."""
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)


def result_response(result, status=200):
    """
    Render an engine Result for an HTTP caller.

    Success uses `status`; failure uses the error's own status code.
    """
    if result.ok:
        return jsonify({"success": True, "data": result.data}), status
    return error_response(result.error)
