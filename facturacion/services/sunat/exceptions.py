# facturacion/services/sunat/exceptions.py
# -*- coding: utf-8 -*-
"""
Taxonomía de errores del pipeline SUNAT.

Cada error conoce la etapa del pipeline donde se produjo (``etapa``), de
modo que el workflow pueda informar "qué falló y por qué" sin reintentar
a ciegas. Solo ``TransportError`` se reintenta automáticamente.

``ApplicationRejection`` NO es un error de sistema: representa un
intercambio exitoso con SUNAT cuyo resultado de negocio es "rechazado".
"""
from __future__ import annotations

from typing import Optional


class SunatError(Exception):
    """Base para errores técnicos del pipeline de comprobantes."""

    etapa: str = "PIPELINE"

    def __init__(self, message: str, *, etapa: Optional[str] = None) -> None:
        super().__init__(message)
        if etapa:
            self.etapa = etapa

    @property
    def detalle(self) -> str:
        causa = self.__cause__
        if causa is not None:
            return f"{self} (causa: {causa})"
        return str(self)


class DocumentValidationError(SunatError):
    """Datos de negocio inválidos. Se detecta antes de convertir y no marca ERROR."""

    etapa = "VALIDACION"

    def __init__(self, message: str, *, campo: Optional[str] = None) -> None:
        super().__init__(message)
        self.campo = campo


class CalculationError(SunatError):
    etapa = "CALCULO"


class ConversionError(SunatError):
    etapa = "CONVERSION"


class SerializationError(SunatError):
    etapa = "SERIALIZACION"


class CanonicalizationError(SunatError):
    etapa = "CANONICALIZACION"


class SigningError(SunatError):
    etapa = "FIRMA"


class KeyLoadError(SigningError):
    """No se pudo obtener el par certificado / clave privada."""


class VerificationError(SunatError):
    etapa = "VERIFICACION"


class PackagingError(SunatError):
    etapa = "EMPAQUETADO"

    def __init__(self, message: str, *, campo: Optional[str] = None) -> None:
        super().__init__(message)
        self.campo = campo


class TransportError(SunatError):
    """Fallo de red al intentar obtener una respuesta HTTP (reintentable)."""

    etapa = "TRANSPORTE"


class SubmissionCancelled(TransportError):
    """La secuencia de reintentos fue cancelada por el llamador."""


class ProtocolError(SunatError):
    """SOAP Fault o estado HTTP inesperado. Nunca se reintenta."""

    etapa = "PROTOCOLO"

    def __init__(
        self,
        message: str,
        *,
        codigo: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.codigo = codigo
        self.http_status = http_status


class ApplicationRejection(Exception):
    """SUNAT procesó el comprobante y lo rechazó (resultado terminal de negocio)."""

    def __init__(self, codigo: str, descripcion: str) -> None:
        super().__init__(f"Comprobante rechazado por SUNAT [{codigo}]: {descripcion}")
        self.codigo = codigo
        self.descripcion = descripcion
