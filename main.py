import logging
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse, Response, StreamingResponse
from sqlalchemy.orm import Session

from categorizer import CategoryMatcher, load_knowledge
from config import get_settings
from database import SessionLocal, engine, session_scope
from projection import InvalidRecurrenceError
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    BackupOut,
    BalanceOut,
    BalancePointOut,
    CategoryIn,
    CategoryOut,
    CSVImportRowIn,
    CSVPreviewOut,
    GenerateOut,
    SimulationOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    BackupNotFoundError,
    BackupService,
    BalanceService,
    CategoryService,
    CSVService,
    NotFoundError,
    RecurringTransactionService,
    TransactionService,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024

app = FastAPI(title="Finance Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_matcher() -> CategoryMatcher:
    return CategoryMatcher(load_knowledge(get_settings().categories_file))


def get_backup_service() -> BackupService:
    return BackupService(get_settings(), engine)


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        created = CategoryService(session).seed_from_knowledge(
            get_matcher().knowledge
        )
        logger.info(f"category_seed: created={created}")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


# Transactions


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must be before end")
    return TransactionService(db).list(start, end)


@app.get("/api/transactions/export.csv")
def export_transactions_csv(
    db: Session = Depends(get_db), matcher: CategoryMatcher = Depends(get_matcher)
):
    transactions = TransactionService(db).list()
    csv_text = CSVService(db, matcher).export(transactions)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"transactions_export_{timestamp}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).create(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    service = TransactionService(db)
    try:
        service.get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.update(transaction_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.get("/api/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).get(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).update(category_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Balance


@app.get("/api/balance", response_model=BalanceOut)
def current_balance(db: Session = Depends(get_db)):
    return BalanceOut.model_validate(BalanceService(db).current())


@app.get("/api/balance/as-of", response_model=BalanceOut)
def balance_as_of(
    as_of: date = Query(..., alias="date"), db: Session = Depends(get_db)
):
    return BalanceOut.model_validate(BalanceService(db).as_of(as_of))


@app.get("/api/balance/projection", response_model=list[BalancePointOut])
def balance_projection(
    days: int = Query(30, ge=0, le=3660), db: Session = Depends(get_db)
):
    points = BalanceService(db).projection(days)
    return [BalancePointOut.model_validate(p) for p in points]


@app.get("/api/balance/simulate", response_model=SimulationOut)
def simulate_purchase(
    amount: Decimal = Query(..., ge=0, max_digits=15, decimal_places=2),
    days: int = Query(30, ge=0, le=3660),
    recurrence: str = "none",
    occurrences: int = Query(1, ge=1, le=1200),
    db: Session = Depends(get_db),
):
    try:
        result = BalanceService(db).simulate(amount, days, recurrence, occurrences)
    except InvalidRecurrenceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SimulationOut.model_validate(result)


# Recurring


@app.get("/api/recurring", response_model=list[TransactionOut])
def list_recurring(db: Session = Depends(get_db)):
    return RecurringTransactionService(db).list_templates()


@app.post("/api/recurring/generate", response_model=GenerateOut)
def generate_recurring(db: Session = Depends(get_db)):
    today = local_today()
    created = RecurringTransactionService(db).generate_pending(today)
    return GenerateOut(as_of=today, created=created)


# CSV import


@app.post("/api/import/csv/preview", response_model=CSVPreviewOut)
async def import_csv_preview(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    matcher: CategoryMatcher = Depends(get_matcher),
):
    raw = await file.read()
    if len(raw) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="CSV file too large")
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        content = raw.decode("latin-1")
    rows, errors = CSVService(db, matcher).preview(content)
    return CSVPreviewOut(rows=rows, errors=errors)


@app.post("/api/import/csv/commit")
def import_csv_commit(
    rows: list[CSVImportRowIn],
    db: Session = Depends(get_db),
    matcher: CategoryMatcher = Depends(get_matcher),
):
    created = CSVService(db, matcher).commit(rows)
    return {"created": created}


# Backups


@app.get("/api/backups", response_model=list[BackupOut])
def list_backups(service: BackupService = Depends(get_backup_service)):
    return [
        BackupOut(name=b.name, size=b.size, created=b.created)
        for b in service.list_backups()
    ]


@app.post("/api/backups", status_code=201)
def create_backup(service: BackupService = Depends(get_backup_service)):
    try:
        name = service.create_backup()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"name": name}


@app.get("/api/backups/export")
def export_database(service: BackupService = Depends(get_backup_service)):
    try:
        path = service.database_path
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not path.exists():
        raise HTTPException(status_code=404, detail="Database not found")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return FileResponse(
        path,
        media_type="application/octet-stream",
        filename=f"finance_export_{timestamp}.db",
    )


@app.post("/api/backups/import")
async def import_database(
    file: UploadFile = File(...),
    service: BackupService = Depends(get_backup_service),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="DB file too large (max 25MB)")
    try:
        service.import_database(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "imported"}


@app.post("/api/backups/{name}/restore")
def restore_backup(name: str, service: BackupService = Depends(get_backup_service)):
    try:
        service.restore_backup(name)
    except BackupNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "restored", "name": name}


@app.delete("/api/backups/{name}", status_code=204)
def delete_backup(name: str, service: BackupService = Depends(get_backup_service)):
    try:
        service.delete_backup(name)
    except BackupNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
