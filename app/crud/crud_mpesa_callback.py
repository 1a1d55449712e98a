from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.crud.base import CRUDBase
from app.models.mpesa_callback import MpesaCallbackReceipt


class CRUDMpesaCallbackReceipt(CRUDBase[MpesaCallbackReceipt]):
    async def aget_by_checkout_and_result(
        self, db: AsyncSession, *, checkout_request_id: str, result_code: int
    ) -> MpesaCallbackReceipt | None:
        stmt = select(MpesaCallbackReceipt).filter(
            MpesaCallbackReceipt.checkout_request_id == checkout_request_id,
            MpesaCallbackReceipt.result_code == result_code,
        )
        result = await db.execute(stmt)
        return result.scalars().first()


mpesa_callback_receipt = CRUDMpesaCallbackReceipt(MpesaCallbackReceipt)
