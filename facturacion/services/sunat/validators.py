# facturacion/services/sunat/validators.py
# -*- coding: utf-8 -*-
"""
Validaciones de negocio previas a la conversión UBL.

Funciones:
- es_ruc_valido(ruc) -> bool
- validar_ruc(ruc, campo) -> None (lanza DocumentValidationError)
- validar_identificacion_receptor(parte) -> None
- validar_documento(documento) -> None

Los errores siempre indican el campo inválido para que el usuario pueda
corregir el dato sin adivinar.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from facturacion.services.sunat.documento import (
    Documento,
    Moneda,
    Parte,
    TipoAfectacion,
    TipoComprobante,
    TipoDocumentoIdentidad,
)
from facturacion.services.sunat.exceptions import DocumentValidationError

logger = logging.getLogger("facturacion.sunat")

# Tipos de contribuyente válidos (primeros 2 dígitos del RUC)
PREFIJOS_RUC = ("10", "15", "17", "20")

LONGITUD_RUC = 11
LONGITUD_DNI = 8
MAX_LONGITUD_SERIE = 10


def es_ruc_valido(ruc: str | None) -> bool:
    if not ruc or len(ruc) != LONGITUD_RUC:
        return False
    if not ruc.isascii() or not ruc.isdigit():
        return False
    return ruc[:2] in PREFIJOS_RUC


def validar_ruc(ruc: str | None, campo: str = "emisor.ruc") -> None:
    if not ruc or len(ruc) != LONGITUD_RUC:
        raise DocumentValidationError(
            f"{campo}: el RUC debe tener {LONGITUD_RUC} dígitos", campo=campo
        )
    if not ruc.isascii() or not ruc.isdigit():
        raise DocumentValidationError(
            f"{campo}: el RUC debe contener solo números", campo=campo
        )
    if ruc[:2] not in PREFIJOS_RUC:
        raise DocumentValidationError(
            f"{campo}: tipo de contribuyente inválido ({ruc[:2]})", campo=campo
        )


def validar_identificacion_receptor(parte: Parte) -> None:
    campo = "receptor.numero_documento"
    numero = (parte.numero_documento or "").strip()
    if not numero:
        raise DocumentValidationError(f"{campo}: es obligatorio", campo=campo)

    tipo = parte.tipo_documento
    if tipo == TipoDocumentoIdentidad.RUC:
        validar_ruc(numero, campo=campo)
    elif tipo == TipoDocumentoIdentidad.DNI:
        if len(numero) != LONGITUD_DNI or not numero.isdigit():
            raise DocumentValidationError(
                f"{campo}: el DNI debe tener {LONGITUD_DNI} dígitos", campo=campo
            )
    elif tipo not in TipoDocumentoIdentidad.values:
        raise DocumentValidationError(
            f"receptor.tipo_documento: tipo de documento desconocido ({tipo})",
            campo="receptor.tipo_documento",
        )


def validar_documento(documento: Documento) -> None:
    """
    Valida un comprobante antes de generar su XML.

    No modifica el documento. Lanza DocumentValidationError en el primer
    problema encontrado.
    """
    if documento.tipo not in TipoComprobante.values:
        raise DocumentValidationError(
            f"tipo: tipo de comprobante no soportado ({documento.tipo})", campo="tipo"
        )

    serie = (documento.serie or "").strip()
    if not serie or len(serie) > MAX_LONGITUD_SERIE:
        raise DocumentValidationError(
            f"serie: debe tener entre 1 y {MAX_LONGITUD_SERIE} caracteres",
            campo="serie",
        )
    if not (documento.numero or "").strip():
        raise DocumentValidationError("numero: es obligatorio", campo="numero")
    if documento.fecha_emision is None:
        raise DocumentValidationError("fecha_emision: es obligatoria", campo="fecha_emision")
    if documento.moneda not in Moneda.values:
        raise DocumentValidationError(
            f"moneda: debe ser una de {', '.join(Moneda.values)}", campo="moneda"
        )

    validar_ruc(documento.emisor.numero_documento, campo="emisor.ruc")
    if not (documento.emisor.razon_social or "").strip():
        raise DocumentValidationError(
            "emisor.razon_social: es obligatoria", campo="emisor.razon_social"
        )
    validar_identificacion_receptor(documento.receptor)

    if documento.tipo in (TipoComprobante.NOTA_CREDITO, TipoComprobante.NOTA_DEBITO):
        if documento.referencia is None or not documento.referencia.serie_numero:
            raise DocumentValidationError(
                "referencia: las notas deben indicar el comprobante afectado",
                campo="referencia",
            )

    if not documento.items:
        raise DocumentValidationError("items: se requiere al menos un ítem", campo="items")

    for idx, item in enumerate(documento.items, start=1):
        prefijo = f"items[{idx}]"
        if item.numero <= 0:
            raise DocumentValidationError(
                f"{prefijo}.numero: debe ser mayor a cero", campo=f"{prefijo}.numero"
            )
        if item.cantidad <= 0:
            raise DocumentValidationError(
                f"{prefijo}.cantidad: debe ser mayor a cero", campo=f"{prefijo}.cantidad"
            )
        if item.valor_unitario < 0:
            raise DocumentValidationError(
                f"{prefijo}.valor_unitario: no puede ser negativo",
                campo=f"{prefijo}.valor_unitario",
            )
        if item.tipo_afectacion not in TipoAfectacion.values:
            raise DocumentValidationError(
                f"{prefijo}.tipo_afectacion: código desconocido ({item.tipo_afectacion})",
                campo=f"{prefijo}.tipo_afectacion",
            )
        for impuesto in item.impuestos:
            if impuesto.tasa < 0 or (
                impuesto.base_imponible is not None and impuesto.base_imponible < Decimal("0")
            ):
                raise DocumentValidationError(
                    f"{prefijo}.impuestos: base y tasa deben ser >= 0",
                    campo=f"{prefijo}.impuestos",
                )

    logger.debug("Comprobante %s validado correctamente", documento.serie_numero)
