"""
Schemas for request and response validation.
Uses Pydantic models for data validation and serialization.
"""

# Import all schemas to make them available when importing from app.schemas
from app.schemas import device, flow
