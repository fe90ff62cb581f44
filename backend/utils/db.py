from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, DBAPIError
import logging

logger = logging.getLogger(__name__)


async def safe_commit(session, client_error_message: str = "Dados duplicados. Este registro já existe.", server_error_message: str = "Erro interno do servidor"):
    """Commit, rolling back and raising an HTTPException on failure."""
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Commit rejected by constraint: {e.orig}")
        raise HTTPException(status_code=409, detail=client_error_message) from e
    except DBAPIError as e:
        await session.rollback()
        logger.error(f"Commit failed at the driver: {e}")
        raise HTTPException(status_code=503, detail="Erro de conexão com o banco de dados.") from e
    except Exception as e:
        await session.rollback()
        logger.error(f"Commit failed: {e}")
        raise HTTPException(status_code=500, detail=server_error_message) from e
