"""Account service — operator-side provisioning of the billing projection.

Accounts are normally created by the auth collaborator and their plan kept
in sync by billing; these helpers back the operator CLI and tests.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.models.account import Account


class AccountExistsError(ValueError):
    """Raised when an account with the same email already exists."""


async def get_account_by_email(session: AsyncSession, email: str) -> Account | None:
    result = await session.execute(select(Account).where(Account.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_account(session: AsyncSession, email: str, *, plan: str = "free") -> Account:
    """Create an active account.

    Raises:
        AccountExistsError: If the email is already registered.
    """
    email = email.strip().lower()
    if await get_account_by_email(session, email) is not None:
        msg = f"Account '{email}' already exists"
        raise AccountExistsError(msg)

    account = Account(email=email, plan=plan.lower(), is_active=True)
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


async def set_plan(session: AsyncSession, email: str, plan: str) -> Account:
    """Change an account's plan; the new limit applies to the current period at once.

    Raises:
        LookupError: If the account does not exist.
    """
    account = await get_account_by_email(session, email)
    if account is None:
        msg = f"Account '{email}' not found"
        raise LookupError(msg)
    account.plan = plan.lower()
    await session.commit()
    return account
