import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import Response

from APIs.Core import get_current_user, CurrentUser
from Database.session import division_session_scope
from Schemas.AEBF.DivisionalBudgetSchema import (
    DivisionalBudgetDataRequest,
    ExportDivisionalBudgetRequest,
    ImportDivisionalBudgetRequest,
    SaveDivisionalBudgetRequest,
)
from utils.cache import cache_get, cache_set, division_cache_prefix
from utils.divisional_budget_aggregator import get_divisional_budget_info
from utils.divisional_budget_service import (
    delete_divisional_budget,
    import_budget,
    save_divisional_budget,
    validate_budget_year,
)
from utils.divisional_html_codec import (
    build_export_filename,
    generate_divisional_budget_html,
    parse_imported_html,
)
from utils.divisions import validate_division
from utils.errors import BudgetValidationError, BudgetPersistenceError
from utils.file_validation import read_html_upload
from utils.rate_limiter import enforce_rate_limit

divisionalBudgetRoute = APIRouter(prefix="/api/aebf", tags=["AEBF Divisional Budget"])

logger = logging.getLogger(__name__)

BUDGET_ERRORS = (HTTPException, BudgetValidationError, BudgetPersistenceError)


def _import_html(html_content: str, force_update: bool, username: str) -> dict:
    parsed = parse_imported_html(html_content)
    code = validate_division(parsed.division)
    with division_session_scope(code) as db:
        result = import_budget(db, parsed, force_update=force_update)
    if not result.get("needsConfirmation"):
        logger.info(
            f"User {username} imported divisional budget {code} {parsed.budget_year} "
            f"({result['recordsInserted']['total']} rows)"
        )
    return result


@divisionalBudgetRoute.post("/divisional-html-budget-data")
def get_divisional_html_budget_data(
    request_body: DivisionalBudgetDataRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Actuals, pricing and saved budget behind the divisional budget form."""
    enforce_rate_limit(request, "budget_query")
    try:
        if not request_body.division or not request_body.actualYear:
            raise BudgetValidationError("Division and actualYear are required")
        code = validate_division(request_body.division)
        budget_year = request_body.budgetYear or request_body.actualYear + 1

        cache_key = f"{division_cache_prefix(code)}:budget-data:{request_body.actualYear}:{budget_year}"
        data = cache_get(cache_key)
        if data is None:
            with division_session_scope(code) as db:
                info = get_divisional_budget_info(db, code, request_body.actualYear, budget_year)
            data = {
                "data": info["tableData"],
                "servicesChargesData": info["servicesChargesData"],
                "pricingData": info["pricingData"],
                "budgetData": info["budgetData"],
                "servicesChargesBudget": info["servicesChargesBudget"],
                "actualYear": info["actualYear"],
                "budgetYear": info["budgetYear"],
            }
            cache_set(cache_key, data)

        return {"success": True, "data": data}

    except BUDGET_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Error loading divisional budget data: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error loading divisional budget data: {str(e)}"
        )


@divisionalBudgetRoute.post("/export-divisional-html-budget-form")
def export_divisional_html_budget_form(
    request_body: ExportDivisionalBudgetRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Download the editable divisional budget form as an HTML file."""
    enforce_rate_limit(request, "budget_export")
    try:
        code = validate_division(request_body.division)
        payload = request_body.model_dump()
        payload["division"] = code
        payload["budgetYear"] = request_body.budgetYear or request_body.actualYear + 1

        html = generate_divisional_budget_html(payload)
        filename = build_export_filename(code, payload["budgetYear"])
        logger.info(f"User {current_user.username} exported divisional budget form {filename}")

        return Response(
            content=html,
            media_type="text/html; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'}
        )

    except BUDGET_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Error generating divisional budget form: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error generating divisional budget form: {str(e)}"
        )


@divisionalBudgetRoute.post("/import-divisional-budget-html")
def import_divisional_budget_html(
    request_body: ImportDivisionalBudgetRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Import a filled-in divisional budget form.

    When a budget already exists for the division/year the response asks for
    confirmation (needsConfirmation) and nothing is written; resend with
    forceUpdate (or confirmReplace) to replace it.
    """
    enforce_rate_limit(request, "budget_import")
    try:
        if not request_body.htmlContent:
            raise BudgetValidationError("htmlContent is required")
        force_update = request_body.forceUpdate or request_body.confirmReplace
        result = _import_html(request_body.htmlContent, force_update, current_user.username)
        return {"success": True, "data": result}

    except BUDGET_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Error importing divisional budget HTML: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error importing divisional budget HTML: {str(e)}"
        )


@divisionalBudgetRoute.post("/import-divisional-budget-html/upload")
def upload_divisional_budget_html(
    request: Request,
    file: UploadFile = File(...),
    forceUpdate: bool = Form(False),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Same as /import-divisional-budget-html with the form sent as a file."""
    enforce_rate_limit(request, "budget_import")
    try:
        html_content = read_html_upload(file)
        result = _import_html(html_content, forceUpdate, current_user.username)
        return {"success": True, "data": result}

    except BUDGET_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Error importing uploaded divisional budget {file.filename}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error importing divisional budget file: {str(e)}"
        )


@divisionalBudgetRoute.post("/save-divisional-budget")
def save_divisional_budget_route(
    request_body: SaveDivisionalBudgetRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
):
    """Live save from the budget grid (records in KGS, Services Charges in full currency)."""
    enforce_rate_limit(request, "budget_write")
    try:
        code = validate_division(request_body.division)
        budget_year = validate_budget_year(request_body.budgetYear)
        with division_session_scope(code) as db:
            result = save_divisional_budget(
                db,
                code,
                budget_year,
                [r.model_dump() for r in request_body.records],
                [r.model_dump() for r in request_body.servicesChargesRecords],
            )
        logger.info(f"User {current_user.username} saved divisional budget {code} {budget_year}")
        return {"success": True, "data": result}

    except BUDGET_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Error saving divisional budget: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error saving divisional budget: {str(e)}"
        )


@divisionalBudgetRoute.delete("/delete-divisional-budget/{division}/{budgetYear}")
def delete_divisional_budget_route(
    division: str,
    budgetYear: int,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
):
    enforce_rate_limit(request, "budget_write")
    try:
        code = validate_division(division)
        with division_session_scope(code) as db:
            deleted = delete_divisional_budget(db, code, budgetYear)
        logger.info(f"User {current_user.username} deleted divisional budget {code} {budgetYear}")
        return {
            "success": True,
            "data": {
                "message": f"Deleted {deleted} divisional budget records",
                "division": code,
                "budgetYear": budgetYear,
                "recordsDeleted": deleted,
            },
        }

    except BUDGET_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Error deleting divisional budget {division} {budgetYear}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error deleting divisional budget: {str(e)}"
        )
