# facturacion/services/sunat/certificado.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from django.utils import timezone

from facturacion.services.sunat.exceptions import KeyLoadError

logger = logging.getLogger("facturacion.sunat")


@dataclass
class KeyMaterial:
    """
    Par certificado + clave privada para firmar un comprobante.

    Se carga por invocación y no se guarda en caché entre solicitudes.
    """

    private_key: object
    certificate: x509.Certificate
    additional_certs: List[x509.Certificate] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()


def verificar_vigencia(cert: x509.Certificate) -> None:
    """Lanza KeyLoadError si el certificado no está vigente ahora."""
    now = timezone.now()
    cert_start = cert.not_valid_before_utc
    cert_end = cert.not_valid_after_utc

    if now < cert_start or now > cert_end:
        logger.warning(
            "Certificado %s fuera de vigencia. Válido: %s hasta %s. Ahora: %s",
            cert.subject.rfc4514_string(),
            cert_start,
            cert_end,
            now,
        )
        raise KeyLoadError(
            f"Certificado fuera de vigencia. Válido desde {cert_start} hasta {cert_end}"
        )


def cargar_pkcs12(data: bytes, password: Optional[str]) -> KeyMaterial:
    """
    Carga un certificado PKCS#12 (.p12 / .pfx) desde bytes.
    """
    if not data:
        raise KeyLoadError("El contenido del certificado PKCS#12 está vacío")

    try:
        private_key, cert, additional_certs = pkcs12.load_key_and_certificates(
            data,
            password.encode("utf-8") if password else None,
        )
    except Exception as exc:
        logger.exception("Error cargando PKCS12: %s", exc)
        raise KeyLoadError(f"Error al cargar el archivo PKCS12: {exc}") from exc

    if private_key is None or cert is None:
        raise KeyLoadError(
            "No se pudo extraer clave privada/certificado desde el archivo PKCS12."
        )

    verificar_vigencia(cert)
    logger.debug(
        "Certificado %s válido hasta %s",
        cert.subject.rfc4514_string(),
        cert.not_valid_after_utc,
    )
    return KeyMaterial(
        private_key=private_key,
        certificate=cert,
        additional_certs=list(additional_certs or []),
    )


def cargar_certificado(path: Optional[str], password: Optional[str]) -> KeyMaterial:
    """Lee un archivo PKCS#12 y devuelve su KeyMaterial."""
    if not path:
        raise KeyLoadError("No se configuró la ruta del certificado digital")
    if not os.path.exists(path):
        raise KeyLoadError(f"No se encuentra el archivo de certificado en: {path}")

    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        logger.exception("Error leyendo archivo .p12: %s", exc)
        raise KeyLoadError(f"Error leyendo archivo de certificado: {exc}") from exc

    return cargar_pkcs12(data, password)
