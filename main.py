import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from caps import CapService
from database import SessionLocal, init_schema
from errors import FXRateUnavailable, NotFound
from filters import EntryFilter
from models import EntryType
from periods import resolve_bounds
from schemas import (
    BalanceRequest,
    BalanceResult,
    CapAmountIn,
    CapChangeOut,
    CapOut,
    CapSetIn,
    CapSetResult,
    CategoryDeleteResult,
    CategoryIn,
    CategoryOut,
    EntryAddResult,
    EntryIn,
    EntryOut,
    LabelDeleteResult,
    LabelIn,
    LabelOut,
    ReportRequest,
    ReportResult,
    SettingsIn,
    SettingsOut,
)
from services import (
    BalanceService,
    CategoryService,
    EntryService,
    LabelService,
    ReportService,
    SettingsService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pocket Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    init_schema()
    logger.info("Ledger schema ready")


@app.get("/api/categories", response_model=List[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def rename_category(category_id: int, payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).rename(category_id, payload.name)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/categories/{category_id}", response_model=CategoryDeleteResult)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).delete(category_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/labels", response_model=List[LabelOut])
def list_labels(db: Session = Depends(get_db)):
    return LabelService(db).list_all()


@app.post("/api/labels", response_model=LabelOut, status_code=201)
def create_label(payload: LabelIn, db: Session = Depends(get_db)):
    try:
        return LabelService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/labels/{label_id}", response_model=LabelDeleteResult)
def delete_label(label_id: int, db: Session = Depends(get_db)):
    try:
        return LabelService(db).delete(label_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/entries", response_model=List[EntryOut])
def list_entries(
    type: Optional[EntryType] = None,
    category_id: Optional[int] = None,
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    label_id: List[int] = Query(default=[]),
    label_mode: Optional[str] = None,
    payment_method: Optional[str] = None,
    db: Session = Depends(get_db),
):
    try:
        start, end = resolve_bounds(date_from, date_to)
        filters = EntryFilter.build(
            type=type,
            category_id=category_id,
            start=start,
            end=end,
            label_ids=label_id,
            label_mode=label_mode,
            payment_method=payment_method,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    service = EntryService(db)
    return [service.to_out(entry) for entry in service.list(filters)]


@app.post("/api/entries", response_model=EntryAddResult, status_code=201)
def add_entry(payload: EntryIn, db: Session = Depends(get_db)):
    try:
        return EntryService(db).add(payload)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/entries/{entry_id}", response_model=EntryOut)
def get_entry(entry_id: int, db: Session = Depends(get_db)):
    service = EntryService(db)
    try:
        return service.to_out(service.get(entry_id))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/entries/{entry_id}", status_code=204)
def delete_entry(entry_id: int, db: Session = Depends(get_db)):
    try:
        EntryService(db).soft_delete(entry_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/caps/{month_key}", response_model=CapSetResult)
def set_cap(month_key: str, payload: CapAmountIn, db: Session = Depends(get_db)):
    data = CapSetIn(
        month_key=month_key,
        amount_minor=payload.amount_minor,
        currency_code=payload.currency_code,
    )
    try:
        cap, change = CapService(db).set(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CapSetResult(
        cap=CapOut.model_validate(cap), change=CapChangeOut.model_validate(change)
    )


@app.get("/api/caps/{month_key}", response_model=CapOut)
def show_cap(month_key: str, db: Session = Depends(get_db)):
    try:
        return CapService(db).show(month_key)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/caps/{month_key}/history", response_model=List[CapChangeOut])
def cap_history(month_key: str, db: Session = Depends(get_db)):
    try:
        return CapService(db).history(month_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/reports", response_model=ReportResult)
def report(
    scope: Optional[str] = None,
    month: Optional[str] = None,
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    group_by: Optional[str] = None,
    category_id: Optional[int] = None,
    label_id: List[int] = Query(default=[]),
    label_mode: Optional[str] = None,
    payment_method: Optional[str] = None,
    convert_to: Optional[str] = None,
    db: Session = Depends(get_db),
):
    request = ReportRequest(
        scope=scope,
        month_key=month,
        date_from=date_from,
        date_to=date_to,
        grouping=group_by,
        category_id=category_id,
        label_ids=label_id,
        label_mode=label_mode,
        payment_method=payment_method,
        convert_to=convert_to,
    )
    try:
        return ReportService(db).generate(request)
    except FXRateUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/balance", response_model=BalanceResult)
def balance(
    scope: Optional[str] = None,
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    category_id: Optional[int] = None,
    label_id: List[int] = Query(default=[]),
    label_mode: Optional[str] = None,
    convert_to: Optional[str] = None,
    db: Session = Depends(get_db),
):
    request = BalanceRequest(
        scope=scope,
        date_from=date_from,
        date_to=date_to,
        category_id=category_id,
        label_ids=label_id,
        label_mode=label_mode,
        convert_to=convert_to,
    )
    try:
        return BalanceService(db).compute(request)
    except FXRateUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/settings", response_model=SettingsOut)
def get_settings_view(db: Session = Depends(get_db)):
    try:
        return SettingsService(db).get()
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/settings", response_model=SettingsOut)
def put_settings(payload: SettingsIn, db: Session = Depends(get_db)):
    try:
        return SettingsService(db).upsert(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def main():
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=False)


if __name__ == "__main__":
    main()
