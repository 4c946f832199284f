from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

# ============================================
# PROOF FILE UPLOAD
# ============================================
class ProofFileUpload(BaseModel):
    filename: str
    content_base64: str
    mime_type: Optional[str] = None

# ============================================
# TRANSACTION (LEDGER ENTRY) MODELS
# ============================================
class TransactionCreate(BaseModel):
    type: Optional[str] = None  # revenue, expense, commission, adjustment
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    service_id: Optional[int] = None
    task_id: Optional[int] = None
    project_id: Optional[int] = None
    order_id: Optional[int] = None
    status: Optional[str] = None  # honored for admins only
    proof_file: Optional[ProofFileUpload] = None

class TransactionUpdate(BaseModel):
    type: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    service_id: Optional[int] = None
    task_id: Optional[int] = None
    project_id: Optional[int] = None
    order_id: Optional[int] = None
    status: Optional[str] = None
    proof_file: Optional[ProofFileUpload] = None

# ============================================
# PROJECT MODELS
# ============================================
class ProjectCreate(BaseModel):
    title: str
    type: str  # real estate, agricultural, ...
    description: Optional[str] = None
    budget: Optional[Decimal] = None
    currency: Optional[str] = None
    client_id: Optional[int] = None  # admin only
    client_id: Optional[int] = None  # admin only
    agent_id: Optional[int] = None  # admin only

class ProjectUpdate(BaseModel):
    title: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    budget: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None  # admin only
    client_id: Optional[int] = None  # admin only
    agent_id: Optional[int] = None  # admin only

# ============================================
# PROJECT PHASE MODELS
# ============================================
class ProjectPhaseCreate(BaseModel):
    project_id: int
    title: str
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

class ProjectPhaseUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[str] = None
    progress: Optional[int] = Field(default=None)
