# facturacion/services/sunat/packager.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import binascii
import io
import logging
import zipfile
from dataclasses import dataclass

from django.utils import timezone

from facturacion.services.sunat.exceptions import PackagingError

logger = logging.getLogger("facturacion.sunat")

MAX_XML_BYTES = 10 * 1024 * 1024  # 10 MB


@dataclass
class PaqueteFirmado:
    """
    Comprobante firmado listo para sendBill.

    - nombre_archivo: {RUC}-{tipo}-{serie}-{numero} (sin extensión)
    - zip_bytes: ZIP con una sola entrada {nombre_archivo}.xml
    - contenido_base64: zip_bytes en base64
    - xml_firmado: XML firmado original
    """

    nombre_archivo: str
    zip_bytes: bytes
    contenido_base64: str
    xml_firmado: bytes

    @property
    def nombre_zip(self) -> str:
        return f"{self.nombre_archivo}.zip"

    @property
    def nombre_xml(self) -> str:
        return f"{self.nombre_archivo}.xml"


def crear_zip(xml_firmado: bytes, nombre_xml: str) -> bytes:
    buffer = io.BytesIO()
    info = zipfile.ZipInfo(nombre_xml, date_time=timezone.localtime().timetuple()[:6])
    info.compress_type = zipfile.ZIP_DEFLATED
    with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(info, xml_firmado)
    return buffer.getvalue()


def extraer_xml_zip(zip_bytes: bytes) -> tuple[str, bytes]:
    """
    Devuelve (nombre, contenido) de la única entrada .xml del ZIP.

    Lanza PackagingError si el ZIP no es válido, no tiene exactamente una
    entrada .xml, o la entrada supera 10 MB.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
            entradas_xml = [
                info for info in zf.infolist() if info.filename.lower().endswith(".xml")
            ]
            if len(entradas_xml) != 1:
                raise PackagingError(
                    f"entrada_xml: el ZIP debe contener exactamente un .xml "
                    f"(encontrados {len(entradas_xml)})",
                    campo="entrada_xml",
                )
            entrada = entradas_xml[0]
            if entrada.file_size > MAX_XML_BYTES:
                raise PackagingError(
                    f"entrada_xml: {entrada.filename} supera 10 MB ({entrada.file_size} bytes)",
                    campo="entrada_xml",
                )
            return entrada.filename, zf.read(entrada)
    except zipfile.BadZipFile as exc:
        raise PackagingError(f"zip: contenido ZIP inválido ({exc})", campo="zip") from exc


def validar_paquete(paquete: PaqueteFirmado) -> None:
    """Valida que los cuatro campos del paquete existan y sean coherentes entre sí."""
    if not (paquete.nombre_archivo or "").strip():
        raise PackagingError("nombre_archivo: es obligatorio", campo="nombre_archivo")
    if not paquete.zip_bytes:
        raise PackagingError("zip: el archivo ZIP está vacío", campo="zip")
    if not paquete.xml_firmado:
        raise PackagingError("xml: el XML firmado está vacío", campo="xml")
    if not paquete.contenido_base64:
        raise PackagingError("base64: el contenido base64 está vacío", campo="base64")

    try:
        decoded = base64.b64decode(paquete.contenido_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PackagingError(f"base64: contenido inválido ({exc})", campo="base64") from exc
    if decoded != paquete.zip_bytes:
        raise PackagingError(
            "base64: no corresponde exactamente al ZIP generado", campo="base64"
        )

    nombre, contenido = extraer_xml_zip(paquete.zip_bytes)
    if nombre != paquete.nombre_xml:
        raise PackagingError(
            f"entrada_xml: se esperaba {paquete.nombre_xml} y se encontró {nombre}",
            campo="entrada_xml",
        )
    if contenido != paquete.xml_firmado:
        raise PackagingError(
            "entrada_xml: el contenido del ZIP difiere del XML firmado",
            campo="entrada_xml",
        )


def empaquetar(xml_firmado: bytes, document_id: str) -> PaqueteFirmado:
    """
    Empaqueta el XML firmado en un ZIP (deflate) + base64 y valida el resultado.
    """
    if not (document_id or "").strip():
        raise PackagingError("nombre_archivo: es obligatorio", campo="nombre_archivo")
    if not xml_firmado:
        raise PackagingError("xml: el XML firmado está vacío", campo="xml")
    if len(xml_firmado) > MAX_XML_BYTES:
        raise PackagingError(
            f"xml: el XML firmado supera 10 MB ({len(xml_firmado)} bytes)", campo="xml"
        )

    try:
        zip_bytes = crear_zip(xml_firmado, f"{document_id}.xml")
    except (OSError, ValueError, zipfile.LargeZipFile) as exc:
        logger.exception("Error creando ZIP para %s: %s", document_id, exc)
        raise PackagingError(f"zip: no se pudo crear el archivo ({exc})", campo="zip") from exc

    paquete = PaqueteFirmado(
        nombre_archivo=document_id,
        zip_bytes=zip_bytes,
        contenido_base64=base64.b64encode(zip_bytes).decode("ascii"),
        xml_firmado=xml_firmado,
    )
    validar_paquete(paquete)

    logger.info(
        "Paquete %s generado (xml=%s bytes, zip=%s bytes)",
        paquete.nombre_zip,
        len(xml_firmado),
        len(zip_bytes),
    )
    return paquete
