# facturacion/services/sunat/workflow.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from django.utils import timezone

from facturacion.models import Comprobante
from facturacion.services.sunat.certificado import KeyMaterial
from facturacion.services.sunat.client import SunatClient
from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.documento import (
    Documento,
    EstadoProceso,
    validar_transicion,
)
from facturacion.services.sunat.exceptions import (
    ApplicationRejection,
    DocumentValidationError,
    SigningError,
    SunatError,
)
from facturacion.services.sunat.packager import empaquetar
from facturacion.services.sunat.responses import ResultadoConsulta, ResultadoEnvio
from facturacion.services.sunat.signer import firmar_xml
from facturacion.services.sunat.validators import validar_documento
from facturacion.services.sunat.xml_builder import generar_xml

logger = logging.getLogger("facturacion.sunat")


class WorkflowError(Exception):
    """Errores de orquestación que no pertenecen a una etapa del pipeline."""


def _mensaje(origen: str, detalle: str, error: Optional[str] = None) -> Dict[str, Any]:
    return {"origen": origen, "detalle": detalle, "error": error}


def _actualizar_estado(
    comprobante: Comprobante,
    estado: str,
    mensajes: List[Dict[str, Any]] | None = None,
    extra_updates: Dict[str, Any] | None = None,
) -> Comprobante:
    """
    Helper centralizado para cambiar el estado de un comprobante.

    - Valida la transición contra el ciclo de vida.
    - Concatena mensajes nuevos con los previos en .mensajes.
    - Aplica los campos de extra_updates (artefactos del pipeline).
    """
    if mensajes is None:
        mensajes = []
    if extra_updates is None:
        extra_updates = {}

    if comprobante.estado != estado:
        validar_transicion(comprobante.estado, estado)

    mensajes_existentes = comprobante.mensajes or []
    if not isinstance(mensajes_existentes, list):
        mensajes_existentes = [mensajes_existentes]

    comprobante.mensajes = mensajes_existentes + mensajes
    comprobante.estado = estado

    for field, value in extra_updates.items():
        setattr(comprobante, field, value)

    comprobante.updated_at = timezone.now()
    comprobante.save()

    logger.info(
        "Comprobante %s (%s) actualizado a estado=%s (mensajes+=%s)",
        comprobante.pk,
        comprobante.document_id,
        comprobante.estado,
        len(mensajes),
    )
    return comprobante


def _agregar_mensajes(comprobante: Comprobante, mensajes: List[Dict[str, Any]]) -> None:
    """Registra mensajes sin cambiar el estado."""
    comprobante.mensajes = list(comprobante.mensajes or []) + mensajes
    comprobante.save(update_fields=["mensajes", "updated_at"])


def _resultado(
    comprobante: Comprobante,
    ok: bool,
    etapa: Optional[str] = None,
    mensajes: List[Dict[str, Any]] | None = None,
    **extra: Any,
) -> Dict[str, Any]:
    data = {
        "ok": ok,
        "estado": comprobante.estado,
        "etapa": etapa,
        "comprobante_id": comprobante.pk,
        "document_id": comprobante.document_id,
        "mensajes": mensajes or [],
    }
    data.update(extra)
    return data


def _registrar_error(comprobante: Comprobante, exc: SunatError) -> Dict[str, Any]:
    """
    Detiene el pipeline del comprobante: estado ERROR + mensaje con la etapa y la causa.
    """
    mensajes = [_mensaje(exc.etapa, exc.detalle, str(exc))]
    logger.error(
        "Pipeline detenido para comprobante %s en etapa %s: %s",
        comprobante.pk,
        exc.etapa,
        exc.detalle,
    )
    if comprobante.es_terminal:
        _agregar_mensajes(comprobante, mensajes)
    else:
        _actualizar_estado(comprobante, EstadoProceso.ERROR, mensajes=mensajes)
    return _resultado(comprobante, ok=False, etapa=exc.etapa, mensajes=mensajes)


def _obtener_cliente(config: Optional[SunatConfig], client: Optional[SunatClient]) -> SunatClient:
    if client is not None:
        return client
    return SunatClient(config or SunatConfig.from_settings())


# ============================================================
# Etapas
# ============================================================


def _etapa_generar_xml(comprobante: Comprobante, documento: Documento) -> None:
    """PENDIENTE -> PROCESANDO con el XML UBL sin firmar."""
    xml_bytes = generar_xml(documento)
    totales = documento.totales.to_dict() if documento.totales else {}
    _actualizar_estado(
        comprobante,
        EstadoProceso.PROCESANDO,
        mensajes=[
            _mensaje(
                "XML",
                f"XML UBL generado ({len(xml_bytes)} bytes). Importe total: "
                f"{totales.get('importe_total')}",
            )
        ],
        extra_updates={"xml_generado": xml_bytes.decode("utf-8")},
    )


def _etapa_firmar(
    comprobante: Comprobante,
    documento: Documento,
    key_material: Optional[KeyMaterial],
) -> None:
    """PROCESANDO -> FIRMADO."""
    if key_material is None:
        raise SigningError("No se proporcionó certificado digital para firmar")

    if not documento.xml_generado:
        raise SigningError("El comprobante no tiene XML generado para firmar")

    xml_firmado = firmar_xml(documento.xml_generado, key_material)
    documento.xml_firmado = xml_firmado
    _actualizar_estado(
        comprobante,
        EstadoProceso.FIRMADO,
        mensajes=[_mensaje("FIRMA", f"XML firmado con {key_material.subject}")],
        extra_updates={"xml_firmado": xml_firmado.decode("utf-8")},
    )


def _etapa_enviar(comprobante: Comprobante, documento: Documento, client: SunatClient) -> None:
    """FIRMADO -> ENVIADO (-> ACEPTADO / RECHAZADO si SUNAT devolvió CDR)."""
    paquete = empaquetar(documento.xml_firmado, documento.document_id)
    comprobante.archivo_zip = paquete.zip_bytes
    comprobante.save(update_fields=["archivo_zip", "updated_at"])

    resultado = client.enviar_comprobante(paquete)

    origen = "SUNAT_SIMULACION" if resultado.simulado else "SUNAT"
    _actualizar_estado(
        comprobante,
        EstadoProceso.ENVIADO,
        mensajes=[
            _mensaje(origen, f"{paquete.nombre_zip} enviado. Ticket: {resultado.ticket or '-'}")
        ],
        extra_updates={
            "ticket_sunat": resultado.ticket,
            "fecha_envio": resultado.timestamp,
        },
    )

    if not resultado.pendiente:
        _aplicar_respuesta(comprobante, resultado, origen)


def _aplicar_respuesta(
    comprobante: Comprobante,
    resultado: Union[ResultadoEnvio, ResultadoConsulta],
    origen: str = "SUNAT",
) -> None:
    """ENVIADO -> ACEPTADO / RECHAZADO con el CDR."""
    codigo = resultado.codigo_respuesta
    descripcion = resultado.mensaje
    mensajes = [_mensaje(origen, descripcion or "Sin descripción", codigo)]
    mensajes.extend(_mensaje(f"{origen}_NOTA", nota) for nota in resultado.notas)

    try:
        resultado.raise_for_rejection()
    except ApplicationRejection as rechazo:
        logger.warning("Comprobante %s: %s", comprobante.document_id, rechazo)

    _actualizar_estado(
        comprobante,
        resultado.estado,
        mensajes=mensajes,
        extra_updates={
            "cdr_sunat": resultado.cdr,
            "codigo_respuesta": codigo,
            "descripcion_respuesta": descripcion or "",
            "fecha_respuesta": timezone.now(),
        },
    )


# ============================================================
# API pública
# ============================================================


def emitir_comprobante_sync(
    comprobante: Comprobante,
    key_material: Optional[KeyMaterial],
    config: Optional[SunatConfig] = None,
    client: Optional[SunatClient] = None,
    solo_xml: bool = False,
) -> Dict[str, Any]:
    """
    Ejecuta las etapas pendientes del comprobante según su estado actual:

        PENDIENTE  -> validar + XML UBL        -> PROCESANDO
        PROCESANDO -> firma XMLDSig            -> FIRMADO
        FIRMADO    -> ZIP + sendBill           -> ENVIADO -> ACEPTADO / RECHAZADO
        ENVIADO    -> consulta de ticket / CDR

    Un error técnico detiene el pipeline y deja el comprobante en ERROR. Un error
    de validación se informa sin cambiar el estado. Retorna un dict
    {"ok", "estado", "etapa", "mensajes", ...}.
    """
    logger.info(
        "Emitiendo comprobante %s (%s) desde estado=%s",
        comprobante.pk,
        comprobante.document_id,
        comprobante.estado,
    )

    if comprobante.es_terminal:
        return _resultado(
            comprobante,
            ok=comprobante.estado == EstadoProceso.ACEPTADO,
            mensajes=[
                _mensaje(
                    "WORKFLOW",
                    f"El comprobante ya está en estado terminal {comprobante.estado}",
                )
            ],
        )

    if comprobante.estado == EstadoProceso.ENVIADO:
        return consultar_estado_sync(comprobante, config=config, client=client)

    try:
        documento = comprobante.to_documento()

        if comprobante.estado == EstadoProceso.PENDIENTE:
            validar_documento(documento)
            _etapa_generar_xml(comprobante, documento)
            if solo_xml:
                return _resultado(comprobante, ok=True, etapa="XML")

        if comprobante.estado == EstadoProceso.PROCESANDO:
            _etapa_firmar(comprobante, documento, key_material)

        if comprobante.estado == EstadoProceso.FIRMADO:
            _etapa_enviar(comprobante, documento, _obtener_cliente(config, client))

    except DocumentValidationError as exc:
        mensajes = [_mensaje(exc.etapa, exc.detalle, exc.campo)]
        logger.warning("Comprobante %s con datos inválidos: %s", comprobante.pk, exc)
        _agregar_mensajes(comprobante, mensajes)
        return _resultado(comprobante, ok=False, etapa=exc.etapa, mensajes=mensajes, campo=exc.campo)
    except SunatError as exc:
        return _registrar_error(comprobante, exc)

    ok = comprobante.estado in (EstadoProceso.ENVIADO, EstadoProceso.ACEPTADO)
    mensajes = comprobante.mensajes[-3:] if comprobante.mensajes else []
    return _resultado(
        comprobante,
        ok=ok,
        etapa="SUNAT",
        mensajes=mensajes,
        ticket=comprobante.ticket_sunat,
        codigo_respuesta=comprobante.codigo_respuesta,
    )


def consultar_estado_sync(
    comprobante: Comprobante,
    config: Optional[SunatConfig] = None,
    client: Optional[SunatClient] = None,
) -> Dict[str, Any]:
    """
    Consulta en SUNAT un comprobante ENVIADO: primero por ticket y, si no hay
    ticket o sigue pendiente, por RUC/tipo/serie/número (getStatusCdr).

    Un fallo de consulta se registra en mensajes sin cambiar el estado: el
    comprobante sigue ENVIADO y puede consultarse de nuevo.
    """
    if comprobante.estado != EstadoProceso.ENVIADO:
        return _resultado(
            comprobante,
            ok=comprobante.estado == EstadoProceso.ACEPTADO,
            mensajes=[
                _mensaje(
                    "CONSULTA",
                    f"Solo se consultan comprobantes ENVIADO (estado actual: {comprobante.estado})",
                )
            ],
        )

    client = _obtener_cliente(config, client)
    try:
        resultado = None
        if comprobante.ticket_sunat:
            resultado = client.consultar_ticket(comprobante.ticket_sunat)
            if resultado.en_proceso:
                logger.info(
                    "Ticket %s de %s en proceso, se consulta getStatusCdr",
                    comprobante.ticket_sunat,
                    comprobante.document_id,
                )
        if resultado is None or resultado.pendiente:
            resultado = client.consultar_cdr(
                comprobante.ruc_emisor,
                comprobante.tipo,
                comprobante.serie,
                comprobante.numero,
            )
    except SunatError as exc:
        mensajes = [_mensaje(exc.etapa, exc.detalle, str(exc))]
        logger.warning("Consulta SUNAT fallida para %s: %s", comprobante.document_id, exc)
        _agregar_mensajes(comprobante, mensajes)
        return _resultado(comprobante, ok=False, etapa=exc.etapa, mensajes=mensajes)

    if resultado.pendiente:
        mensajes = [_mensaje("CONSULTA", resultado.mensaje or "CDR aún no disponible", resultado.status_code)]
        _agregar_mensajes(comprobante, mensajes)
        return _resultado(comprobante, ok=True, etapa="CONSULTA", mensajes=mensajes)

    _aplicar_respuesta(
        comprobante,
        resultado,
        "SUNAT_SIMULACION" if resultado.simulado else "SUNAT",
    )
    return _resultado(
        comprobante,
        ok=comprobante.estado == EstadoProceso.ACEPTADO,
        etapa="CONSULTA",
        mensajes=comprobante.mensajes[-1:],
        codigo_respuesta=comprobante.codigo_respuesta,
    )
