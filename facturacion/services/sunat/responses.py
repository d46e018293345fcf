# facturacion/services/sunat/responses.py
# -*- coding: utf-8 -*-
"""
Interpretación de respuestas SOAP de SUNAT y de la Constancia de Recepción (CDR).

- procesar_respuesta_envio(status, body) -> ResultadoEnvio   (sendBill)
- procesar_respuesta_estado(status, body) -> ResultadoEstado (getStatus)
- procesar_respuesta_cdr(status, body) -> ResultadoCdr       (getStatusCdr)
- leer_cdr(data) -> RespuestaCdr

Reglas:
- SOAP Fault -> ProtocolError (no reintentable).
- HTTP distinto de 200 sin Fault -> ProtocolError.
- ResponseCode 0 / 0000 -> ACEPTADO; cualquier otro código -> RECHAZADO con la
  descripción tal cual la envía SUNAT; sin código -> pendiente (estado None).
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from django.utils import timezone
from lxml import etree

from facturacion.services.sunat.documento import EstadoProceso
from facturacion.services.sunat.exceptions import ApplicationRejection, ProtocolError
from facturacion.services.sunat.ubl import NS_CAC, NS_CBC

logger = logging.getLogger("facturacion.sunat")

STATUS_EN_PROCESO = "98"


@dataclass
class RespuestaCdr:
    """Contenido relevante de un ApplicationResponse."""

    codigo: Optional[str]
    descripcion: str = ""
    referencia: Optional[str] = None
    notas: List[str] = field(default_factory=list)
    xml: bytes = b""

    @property
    def estado(self) -> Optional[str]:
        if self.codigo is None:
            return None
        if es_codigo_aceptado(self.codigo):
            return EstadoProceso.ACEPTADO
        return EstadoProceso.RECHAZADO


class _RespuestaSunat:
    """Comportamiento común de los resultados que pueden traer un CDR."""

    estado: Optional[str]
    codigo_respuesta: Optional[str]
    mensaje: str

    @property
    def pendiente(self) -> bool:
        return self.estado is None

    def raise_for_rejection(self) -> None:
        if self.estado == EstadoProceso.RECHAZADO:
            raise ApplicationRejection(self.codigo_respuesta or "", self.mensaje)


@dataclass
class ResultadoEnvio(_RespuestaSunat):
    exito: bool
    http_status: int
    ticket: Optional[str] = None
    cdr: Optional[bytes] = None
    mensaje: str = ""
    estado: Optional[str] = None
    codigo_respuesta: Optional[str] = None
    notas: List[str] = field(default_factory=list)
    simulado: bool = False
    timestamp: datetime = field(default_factory=timezone.now)


@dataclass
class ResultadoConsulta(_RespuestaSunat):
    http_status: int
    status_code: Optional[str] = None
    cdr: Optional[bytes] = None
    mensaje: str = ""
    estado: Optional[str] = None
    codigo_respuesta: Optional[str] = None
    notas: List[str] = field(default_factory=list)
    simulado: bool = False
    timestamp: datetime = field(default_factory=timezone.now)


@dataclass
class ResultadoEstado(ResultadoConsulta):
    """Respuesta de getStatus (consulta por ticket)."""

    @property
    def en_proceso(self) -> bool:
        return self.status_code == STATUS_EN_PROCESO


@dataclass
class ResultadoCdr(ResultadoConsulta):
    """Respuesta de getStatusCdr (consulta por RUC/tipo/serie/número)."""


# ============================================================
# Helpers
# ============================================================


def es_codigo_aceptado(codigo: str) -> bool:
    codigo = (codigo or "").strip()
    return codigo.isdigit() and int(codigo) == 0


def _parse(body: bytes) -> Optional[etree._Element]:
    if not body:
        return None
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)
    try:
        return etree.fromstring(body, parser=parser)
    except etree.XMLSyntaxError:
        return None


def _find_local(root: etree._Element, name: str) -> Optional[etree._Element]:
    found = root.xpath(f"//*[local-name()='{name}']")
    return found[0] if found else None


def _text_local(root: etree._Element, name: str) -> Optional[str]:
    elem = _find_local(root, name)
    if elem is None or elem.text is None:
        return None
    text = elem.text.strip()
    return text or None


def _check_fault(root: Optional[etree._Element], http_status: int) -> None:
    if root is None:
        if http_status != 200:
            raise ProtocolError(
                f"SUNAT respondió HTTP {http_status} sin contenido SOAP",
                http_status=http_status,
            )
        raise ProtocolError("La respuesta de SUNAT no es XML válido", http_status=http_status)

    fault = _find_local(root, "Fault")
    if fault is not None:
        faultcode = _text_local(fault, "faultcode") or ""
        faultstring = _text_local(fault, "faultstring") or ""
        logger.warning("SOAP Fault de SUNAT: %s - %s", faultcode, faultstring)
        raise ProtocolError(
            f"SOAP Fault {faultcode}: {faultstring}",
            codigo=faultcode,
            http_status=http_status,
        )

    if http_status != 200:
        raise ProtocolError(
            f"Estado HTTP inesperado de SUNAT: {http_status}", http_status=http_status
        )


def _decode_base64(texto: str, campo: str) -> bytes:
    try:
        return base64.b64decode("".join(texto.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError(f"{campo}: contenido base64 inválido") from exc


def _xml_desde_zip(data: bytes) -> bytes:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            for info in zf.infolist():
                if info.filename.lower().endswith(".xml"):
                    return zf.read(info)
    except zipfile.BadZipFile as exc:
        raise ProtocolError(f"CDR: ZIP inválido ({exc})") from exc
    raise ProtocolError("CDR: el ZIP no contiene un archivo XML")


def leer_cdr(data: bytes) -> RespuestaCdr:
    """
    Decodifica un CDR (ZIP con R-*.xml o XML ApplicationResponse directo).
    """
    if not data:
        raise ProtocolError("CDR vacío")

    xml = _xml_desde_zip(data) if data[:2] == b"PK" else data
    root = _parse(xml)
    if root is None:
        raise ProtocolError("CDR: el ApplicationResponse no es XML válido")

    response = root.find(f".//{{{NS_CAC}}}DocumentResponse/{{{NS_CAC}}}Response")
    if response is not None:
        codigo = response.findtext(f"{{{NS_CBC}}}ResponseCode")
        descripcion = response.findtext(f"{{{NS_CBC}}}Description") or ""
        referencia = response.findtext(f"{{{NS_CBC}}}ReferenceID")
    else:
        codigo = _text_local(root, "ResponseCode")
        descripcion = _text_local(root, "Description") or ""
        referencia = _text_local(root, "ReferenceID")

    codigo = codigo.strip() if codigo and codigo.strip() else None
    notas = [n.text.strip() for n in root.findall(f"{{{NS_CBC}}}Note") if n.text]

    return RespuestaCdr(
        codigo=codigo,
        descripcion=descripcion.strip(),
        referencia=referencia.strip() if referencia else None,
        notas=notas,
        xml=xml,
    )


def _leer_contenido_cdr(root: etree._Element, tag: str) -> tuple[Optional[bytes], Optional[RespuestaCdr]]:
    contenido = _text_local(root, tag)
    if not contenido:
        return None, None
    cdr_bytes = _decode_base64(contenido, tag)
    return cdr_bytes, leer_cdr(cdr_bytes)


# ============================================================
# API pública
# ============================================================


def procesar_respuesta_envio(http_status: int, body: bytes) -> ResultadoEnvio:
    root = _parse(body)
    _check_fault(root, http_status)

    ticket = _text_local(root, "ticket")
    cdr_bytes, cdr = _leer_contenido_cdr(root, "applicationResponse")

    if cdr is None:
        logger.info("sendBill sin CDR (ticket=%s): queda pendiente de consulta", ticket)
        return ResultadoEnvio(
            exito=True,
            http_status=http_status,
            ticket=ticket,
            mensaje="Comprobante recibido, CDR pendiente",
        )

    resultado = ResultadoEnvio(
        exito=True,
        http_status=http_status,
        ticket=ticket,
        cdr=cdr_bytes,
        mensaje=cdr.descripcion,
        estado=cdr.estado,
        codigo_respuesta=cdr.codigo,
        notas=cdr.notas,
    )
    if resultado.estado == EstadoProceso.RECHAZADO:
        logger.warning(
            "Comprobante %s rechazado por SUNAT [%s]: %s",
            cdr.referencia,
            cdr.codigo,
            cdr.descripcion,
        )
    else:
        logger.info(
            "CDR recibido para %s: codigo=%s estado=%s",
            cdr.referencia,
            cdr.codigo,
            resultado.estado,
        )
    return resultado


def procesar_respuesta_estado(http_status: int, body: bytes) -> ResultadoEstado:
    root = _parse(body)
    _check_fault(root, http_status)

    status_code = _text_local(root, "statusCode")
    cdr_bytes, cdr = _leer_contenido_cdr(root, "content")

    resultado = ResultadoEstado(http_status=http_status, status_code=status_code, cdr=cdr_bytes)
    if cdr is not None:
        resultado.estado = cdr.estado
        resultado.codigo_respuesta = cdr.codigo
        resultado.mensaje = cdr.descripcion
        resultado.notas = cdr.notas
    elif status_code == STATUS_EN_PROCESO:
        resultado.mensaje = "El comprobante está en proceso en SUNAT"
    else:
        resultado.mensaje = _text_local(root, "statusMessage") or ""
    return resultado


def procesar_respuesta_cdr(http_status: int, body: bytes) -> ResultadoCdr:
    root = _parse(body)
    _check_fault(root, http_status)

    status_code = _text_local(root, "statusCode")
    status_message = _text_local(root, "statusMessage") or ""
    cdr_bytes, cdr = _leer_contenido_cdr(root, "content")

    resultado = ResultadoCdr(
        http_status=http_status,
        status_code=status_code,
        cdr=cdr_bytes,
        mensaje=status_message,
    )
    if cdr is not None:
        resultado.estado = cdr.estado
        resultado.codigo_respuesta = cdr.codigo
        resultado.mensaje = cdr.descripcion or status_message
        resultado.notas = cdr.notas
    return resultado
