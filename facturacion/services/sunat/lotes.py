# facturacion/services/sunat/lotes.py
# -*- coding: utf-8 -*-
"""
Procesamiento de lotes de comprobantes.

Cada lote se procesa en una sola tarea Celery, documento por documento (sin
paralelismo interno), con una pausa fija entre documentos para no saturar el
servicio de SUNAT. Distintos lotes pueden ejecutarse en paralelo en distintos
workers.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from facturacion.models import Comprobante, Lote
from facturacion.services.sunat.certificado import KeyMaterial
from facturacion.services.sunat.client import SunatClient
from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.documento import EstadoProceso
from facturacion.services.sunat.workflow import WorkflowError, emitir_comprobante_sync

logger = logging.getLogger("facturacion.sunat")

ESTADOS_EXITOSOS = (EstadoProceso.ENVIADO, EstadoProceso.ACEPTADO)


def crear_lote(
    comprobante_ids: Iterable[Any],
    descripcion: str = "",
    usuario=None,
) -> Lote:
    ids = [int(i) for i in comprobante_ids]
    if not ids:
        raise WorkflowError("El lote debe incluir al menos un comprobante")

    lote = Lote.objects.create(
        descripcion=descripcion,
        comprobantes=ids,
        total_documentos=len(ids),
        usuario_creacion=usuario,
    )
    logger.info("Lote %s creado con %s comprobantes", lote.pk, len(ids))
    return lote


def iniciar_lote(
    comprobante_ids: Iterable[Any],
    cert_path: Optional[str] = None,
    cert_password: Optional[str] = None,
    descripcion: str = "",
    usuario=None,
) -> Lote:
    """
    Crea el lote y lo despacha a Celery. El avance se consulta con
    obtener_estado_lote(lote.pk).
    """
    from facturacion.tasks import procesar_lote_task

    lote = crear_lote(comprobante_ids, descripcion=descripcion, usuario=usuario)

    def _despachar() -> None:
        async_result = procesar_lote_task.delay(lote.pk, cert_path, cert_password)
        Lote.objects.filter(pk=lote.pk).update(task_id=async_result.id)
        logger.info("Lote %s despachado (task_id=%s)", lote.pk, async_result.id)

    transaction.on_commit(_despachar)
    return lote


def _procesar_comprobante(
    comprobante_id: int,
    key_material: Optional[KeyMaterial],
    config: SunatConfig,
    client: SunatClient,
) -> Dict[str, Any]:
    try:
        comprobante = Comprobante.objects.get(pk=comprobante_id)
    except Comprobante.DoesNotExist:
        logger.error("Lote: comprobante %s no existe", comprobante_id)
        return {
            "id": comprobante_id,
            "ok": False,
            "estado": None,
            "etapa": "LOTE",
            "detalle": "El comprobante no existe",
        }

    try:
        resultado = emitir_comprobante_sync(
            comprobante, key_material, config=config, client=client
        )
    except Exception as exc:  # noqa: BLE001
        # Un fallo inesperado en un documento no detiene el resto del lote
        logger.exception(
            "Error inesperado procesando comprobante %s en lote: %s", comprobante_id, exc
        )
        return {
            "id": comprobante_id,
            "ok": False,
            "estado": comprobante.estado,
            "etapa": "LOTE",
            "detalle": str(exc),
        }

    mensajes = resultado.get("mensajes") or []
    exito = bool(resultado.get("ok")) and resultado.get("estado") in ESTADOS_EXITOSOS
    return {
        "id": comprobante_id,
        "ok": exito,
        "estado": resultado.get("estado"),
        "etapa": resultado.get("etapa"),
        "detalle": mensajes[-1].get("detalle") if mensajes else "",
    }


def _registrar_resultado(lote: Lote, resultado: Dict[str, Any]) -> None:
    """
    Suma el resultado de un documento a los contadores del lote en un solo UPDATE,
    de modo que procesados == exitosos + fallidos en todo momento.
    """
    with transaction.atomic():
        bloqueado = Lote.objects.select_for_update().get(pk=lote.pk)
        bloqueado.resultados = list(bloqueado.resultados or []) + [resultado]
        bloqueado.documentos_procesados = F("documentos_procesados") + 1
        if resultado["ok"]:
            bloqueado.documentos_exitosos = F("documentos_exitosos") + 1
        else:
            bloqueado.documentos_fallidos = F("documentos_fallidos") + 1
        bloqueado.save(
            update_fields=[
                "resultados",
                "documentos_procesados",
                "documentos_exitosos",
                "documentos_fallidos",
                "updated_at",
            ]
        )


def procesar_lote_sync(
    lote: Lote,
    key_material: Optional[KeyMaterial],
    config: Optional[SunatConfig] = None,
    cancelacion: Optional[threading.Event] = None,
    client: Optional[SunatClient] = None,
) -> Dict[str, Any]:
    """
    Procesa secuencialmente los comprobantes del lote, continuando ante fallos.

    Un comprobante cuenta como exitoso si termina ENVIADO o ACEPTADO. Al final el
    lote queda COMPLETADO (sin fallos) o COMPLETADO_CON_ERRORES.
    """
    config = config or SunatConfig.from_settings()
    cancelacion = cancelacion or threading.Event()
    client = client or SunatClient(config, cancelacion=cancelacion)

    ids: List[int] = list(lote.comprobantes or [])
    Lote.objects.filter(pk=lote.pk).update(
        estado=Lote.Estado.PROCESANDO,
        fecha_inicio=timezone.now(),
        total_documentos=len(ids),
    )
    logger.info("Procesando lote %s (%s comprobantes)", lote.pk, len(ids))

    for indice, comprobante_id in enumerate(ids):
        if indice > 0 and config.pausa_lote > 0 and cancelacion.wait(config.pausa_lote):
            logger.warning("Lote %s cancelado tras %s comprobantes", lote.pk, indice)
            break
        if cancelacion.is_set():
            logger.warning("Lote %s cancelado tras %s comprobantes", lote.pk, indice)
            break

        resultado = _procesar_comprobante(comprobante_id, key_material, config, client)
        _registrar_resultado(lote, resultado)
        logger.info(
            "Lote %s: comprobante %s -> ok=%s estado=%s (%s/%s)",
            lote.pk,
            comprobante_id,
            resultado["ok"],
            resultado["estado"],
            indice + 1,
            len(ids),
        )

    lote.refresh_from_db()
    completo = lote.documentos_procesados == lote.total_documentos
    if lote.documentos_fallidos == 0 and completo:
        lote.estado = Lote.Estado.COMPLETADO
    else:
        lote.estado = Lote.Estado.COMPLETADO_CON_ERRORES
    lote.fecha_fin = timezone.now()
    lote.save(update_fields=["estado", "fecha_fin", "updated_at"])

    logger.info(
        "Lote %s finalizado estado=%s procesados=%s exitosos=%s fallidos=%s",
        lote.pk,
        lote.estado,
        lote.documentos_procesados,
        lote.documentos_exitosos,
        lote.documentos_fallidos,
    )
    return obtener_estado_lote(lote.pk)


def obtener_estado_lote(lote_id: int) -> Dict[str, Any]:
    lote = Lote.objects.get(pk=lote_id)
    return {
        "id": lote.pk,
        "descripcion": lote.descripcion,
        "estado": lote.estado,
        "total_documentos": lote.total_documentos,
        "documentos_procesados": lote.documentos_procesados,
        "documentos_exitosos": lote.documentos_exitosos,
        "documentos_fallidos": lote.documentos_fallidos,
        "porcentaje_avance": lote.porcentaje_avance,
        "resultados": lote.resultados or [],
        "task_id": lote.task_id,
        "fecha_inicio": lote.fecha_inicio.isoformat() if lote.fecha_inicio else None,
        "fecha_fin": lote.fecha_fin.isoformat() if lote.fecha_fin else None,
    }
