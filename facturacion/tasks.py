# facturacion/tasks.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from celery import shared_task

from facturacion.models import Comprobante, Lote
from facturacion.services.sunat.certificado import cargar_certificado
from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.documento import EstadoProceso
from facturacion.services.sunat.exceptions import KeyLoadError
from facturacion.services.sunat.lotes import procesar_lote_sync
from facturacion.services.sunat.workflow import consultar_estado_sync, emitir_comprobante_sync

logger = logging.getLogger(__name__)


# =====================================================
# Tarea: Emisión de un comprobante
# =====================================================


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def emitir_comprobante_task(
    self,
    comprobante_id: int,
    cert_path: Optional[str] = None,
    cert_password: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Ejecuta el pipeline completo de un comprobante en background.

    El certificado se carga dentro de la tarea (nunca viaja por el broker).
    Sin cert_path se usa SUNAT_CERTIFICADO_PATH de settings.
    """
    try:
        comprobante = Comprobante.objects.get(pk=comprobante_id)
    except Comprobante.DoesNotExist:
        logger.error("emitir_comprobante_task: Comprobante %s no existe.", comprobante_id)
        return {"ok": False, "error": "ComprobanteDoesNotExist"}

    config = SunatConfig.from_settings()
    try:
        key_material = cargar_certificado(
            cert_path or config.certificado_path,
            cert_password if cert_path else config.certificado_password,
        )
    except KeyLoadError as exc:
        logger.error("emitir_comprobante_task: certificado inválido: %s", exc)
        return {"ok": False, "error": str(exc), "etapa": exc.etapa}

    logger.info("emitir_comprobante_task iniciado para comprobante_id=%s", comprobante_id)

    try:
        resultado = emitir_comprobante_sync(comprobante, key_material, config=config)
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Error inesperado en emitir_comprobante_task para comprobante %s: %s",
            comprobante_id,
            exc,
        )
        if self.request.retries < self.max_retries:
            countdown = 60 * (2**self.request.retries)
            raise self.retry(exc=exc, countdown=countdown)
        return {"ok": False, "error": str(exc)}

    logger.info(
        "emitir_comprobante_task finalizado para comprobante_id=%s, estado=%s",
        comprobante_id,
        resultado.get("estado"),
    )
    return resultado


# =====================================================
# Tarea: Consulta de estado / CDR
# =====================================================


@shared_task(
    bind=True,
    max_retries=6,
    default_retry_delay=60,
)
def consultar_estado_task(self, comprobante_id: int) -> Dict[str, Any]:
    """
    Consulta en SUNAT el CDR de un comprobante ENVIADO.

    Si el comprobante sigue ENVIADO (ticket en proceso o CDR aún no disponible)
    la tarea se reprograma con backoff exponencial: 1, 2, 4, 8, 16, 32 minutos.
    """
    try:
        comprobante = Comprobante.objects.get(pk=comprobante_id)
    except Comprobante.DoesNotExist:
        logger.error("consultar_estado_task: Comprobante %s no existe.", comprobante_id)
        return {"ok": False, "error": "ComprobanteDoesNotExist"}

    logger.info("consultar_estado_task iniciado para comprobante_id=%s", comprobante_id)

    try:
        resultado = consultar_estado_sync(comprobante, config=SunatConfig.from_settings())
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Error inesperado en consultar_estado_task para comprobante %s: %s",
            comprobante_id,
            exc,
        )
        if self.request.retries < self.max_retries:
            countdown = 60 * (2**self.request.retries)
            raise self.retry(exc=exc, countdown=countdown)
        return {"ok": False, "error": str(exc)}

    comprobante.refresh_from_db()

    if comprobante.estado == EstadoProceso.ENVIADO and self.request.retries < self.max_retries:
        countdown = 60 * (2**self.request.retries)
        logger.info(
            "Comprobante %s sigue ENVIADO, reintento consultar_estado_task en %s segundos.",
            comprobante_id,
            countdown,
        )
        raise self.retry(countdown=countdown)

    logger.info(
        "consultar_estado_task finalizado para comprobante_id=%s, estado=%s",
        comprobante_id,
        comprobante.estado,
    )
    return resultado


# =====================================================
# Tarea: Procesamiento de lotes
# =====================================================


@shared_task(bind=True)
def procesar_lote_task(
    self,
    lote_id: int,
    cert_path: Optional[str] = None,
    cert_password: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Procesa un lote completo, un comprobante a la vez.

    Si el certificado no se puede cargar, ningún comprobante podría firmarse:
    el lote se cierra con todos sus documentos contados como fallidos.
    """
    try:
        lote = Lote.objects.get(pk=lote_id)
    except Lote.DoesNotExist:
        logger.error("procesar_lote_task: Lote %s no existe.", lote_id)
        return {"ok": False, "error": "LoteDoesNotExist"}

    config = SunatConfig.from_settings()
    try:
        key_material = cargar_certificado(
            cert_path or config.certificado_path,
            cert_password if cert_path else config.certificado_password,
        )
    except KeyLoadError as exc:
        logger.error("procesar_lote_task: certificado inválido para lote %s: %s", lote_id, exc)
        key_material = None

    logger.info("procesar_lote_task iniciado para lote_id=%s", lote_id)
    estado = procesar_lote_sync(lote, key_material, config=config)
    logger.info(
        "procesar_lote_task finalizado para lote_id=%s, estado=%s",
        lote_id,
        estado.get("estado"),
    )
    return estado
