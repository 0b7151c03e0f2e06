from datetime import datetime, timezone
from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel
import uuid

app = FastAPI(title="Mock Payment Gateway", version="1.0.0")

# Captures keyed by Idempotency-Key; a replayed key returns the original capture
CAPTURES: dict[str, dict] = {}
DECLINED_METHODS = {"pm_declined"}


class CaptureBody(BaseModel):
    payment_method_ref: str
    amount_cents: int


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/captures")
def capture(body: CaptureBody, idempotency_key: str = Header(..., alias="Idempotency-Key")):
    if idempotency_key in CAPTURES:
        return CAPTURES[idempotency_key]
    if body.payment_method_ref in DECLINED_METHODS:
        raise HTTPException(status_code=402, detail="card declined")
    CAPTURES[idempotency_key] = {
        "capture_id": f"cap_{uuid.uuid4().hex[:12]}",
        "amount_cents": body.amount_cents,
        "captured_at": datetime.now(timezone.utc).isoformat(),
    }
    return CAPTURES[idempotency_key]

@app.post("/captures/{idempotency_key}/cancel")
def cancel(idempotency_key: str):
    CAPTURES.pop(idempotency_key, None)
    return {"cancelled": True}

@app.post("/mock-ledger")
def ledger_webhook(payload: dict): return {"received": payload.get("event")}
