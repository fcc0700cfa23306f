"""
Vendor identity for ticket routes.

Login/session handling lives in front of this service; by the time a request
reaches us the gateway has put the authenticated vendor's email in
X-Vendor-Email.
"""

from typing import Optional

from fastapi import Header, HTTPException, status


async def get_current_vendor_email(
    x_vendor_email: Optional[str] = Header(default=None),
) -> str:
    if not x_vendor_email or not x_vendor_email.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Vendor identity required",
        )
    return x_vendor_email.strip().lower()


def can_modify(owner_email: Optional[str], vendor_email: str) -> bool:
    """A ticket belongs to its vendor; tickets with no vendor are unassigned."""
    return not owner_email or owner_email.lower() == vendor_email.lower()
