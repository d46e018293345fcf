# facturacion/services/sunat/converter.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from facturacion.services.sunat.documento import (
    Documento,
    Impuesto,
    Item,
    Parte,
    TipoAfectacion,
    TipoComprobante,
)
from facturacion.services.sunat.exceptions import ConversionError
from facturacion.services.sunat.totals import calcular_totales
from facturacion.services.sunat.ubl import (
    TRIBUTOS,
    VARIANTE_CREDIT_NOTE,
    VARIANTE_DEBIT_NOTE,
    VARIANTE_INVOICE,
    DireccionUBL,
    DocumentoUBL,
    IdentificadorUBL,
    LineaUBL,
    ParteUBL,
    ReferenciaUBL,
    SubtotalImpuestoUBL,
    TerminoPagoUBL,
    TotalImpuestoUBL,
    TotalMonetarioUBL,
    VarianteUBL,
)
from facturacion.services.sunat.validators import es_ruc_valido

logger = logging.getLogger("facturacion.sunat")

TRIBUTO_GRATUITO = "9996"

_VARIANTES = {
    TipoComprobante.FACTURA.value: VARIANTE_INVOICE,
    TipoComprobante.BOLETA.value: VARIANTE_INVOICE,
    TipoComprobante.NOTA_CREDITO.value: VARIANTE_CREDIT_NOTE,
    TipoComprobante.NOTA_DEBITO.value: VARIANTE_DEBIT_NOTE,
}


def seleccionar_variante(tipo: str) -> VarianteUBL:
    """Boleta (03) reutiliza la forma Invoice con otro código de tipo."""
    variante = _VARIANTES.get(str(tipo))
    if variante is None:
        raise ConversionError(f"Tipo de comprobante no soportado: {tipo}")
    return variante


def _check_preconditions(documento: Documento) -> None:
    if not es_ruc_valido(documento.emisor.numero_documento):
        raise ConversionError(
            f"RUC del emisor inválido: {documento.emisor.numero_documento!r}"
        )
    if not (documento.receptor.numero_documento or "").strip():
        raise ConversionError("El receptor no tiene número de documento")
    if not (documento.moneda or "").strip():
        raise ConversionError("El comprobante no tiene moneda")
    if not documento.items:
        raise ConversionError("El comprobante debe tener al menos un ítem")


# ============================================================
# Partes
# ============================================================


def _build_proveedor(emisor: Parte) -> ParteUBL:
    return ParteUBL(
        identificador=IdentificadorUBL(
            valor=emisor.numero_documento,
            scheme_id=emisor.tipo_documento or "6",
        ),
        razon_social=emisor.razon_social,
        nombre_comercial=emisor.nombre_comercial or emisor.razon_social,
        direccion=DireccionUBL(
            linea=emisor.direccion,
            ubigeo=emisor.ubigeo,
            distrito=emisor.distrito,
            provincia=emisor.provincia,
            departamento=emisor.departamento,
            codigo_pais=emisor.codigo_pais or "PE",
        ),
        telefono=emisor.telefono,
        email=emisor.email,
    )


def _build_cliente(receptor: Parte) -> ParteUBL:
    direccion: Optional[DireccionUBL] = None
    if receptor.direccion:
        direccion = DireccionUBL(
            linea=receptor.direccion,
            distrito=receptor.distrito,
            provincia=receptor.provincia,
            departamento=receptor.departamento,
            codigo_pais=receptor.codigo_pais or "PE",
        )
    return ParteUBL(
        identificador=IdentificadorUBL(
            valor=receptor.numero_documento,
            scheme_id=receptor.tipo_documento or "6",
        ),
        razon_social=receptor.razon_social,
        direccion=direccion,
        email=receptor.email,
    )


# ============================================================
# Impuestos
# ============================================================


def _build_subtotal(impuesto: Impuesto, motivo: Optional[str] = None) -> SubtotalImpuestoUBL:
    nombre, codigo = TRIBUTOS.get(impuesto.tipo_impuesto, ("IGV", "VAT"))
    return SubtotalImpuestoUBL(
        base=impuesto.base_imponible or Decimal("0"),
        monto=impuesto.monto,
        categoria=impuesto.codigo_impuesto,
        tributo_id=impuesto.tipo_impuesto,
        tributo_nombre=nombre,
        tributo_codigo=codigo,
        porcentaje=impuesto.tasa,
        motivo_exoneracion=motivo,
    )


def _build_impuestos_documento(impuestos: List[Impuesto]) -> List[TotalImpuestoUBL]:
    """
    Un solo cac:TaxTotal con un subtotal por (tributo, categoría).

    El TaxAmount global excluye el tributo de operaciones gratuitas (9996).
    """
    subtotales = [_build_subtotal(i) for i in impuestos]
    monto = sum(
        (s.monto for s in subtotales if s.tributo_id != TRIBUTO_GRATUITO),
        Decimal("0.00"),
    )
    return [TotalImpuestoUBL(monto=monto, subtotales=subtotales)]


def _build_impuestos_linea(item: Item) -> Optional[TotalImpuestoUBL]:
    if not item.impuestos:
        return None
    subtotales = [_build_subtotal(i, motivo=str(item.tipo_afectacion)) for i in item.impuestos]
    monto = sum((s.monto for s in subtotales), Decimal("0.00"))
    return TotalImpuestoUBL(monto=monto, subtotales=subtotales)


# ============================================================
# Líneas
# ============================================================


def _build_linea(item: Item) -> LineaUBL:
    precio_referencial: Optional[Decimal] = None
    tipo_precio = "01"
    if item.tipo_afectacion != TipoAfectacion.GRAVADO_ONEROSO:
        precio_referencial = item.precio_unitario or item.valor_unitario
        if item.es_gratuito:
            # Valor referencial unitario en operaciones no onerosas
            tipo_precio = "02"

    return LineaUBL(
        id=str(item.numero),
        cantidad=item.cantidad,
        unidad=item.unidad_medida or "NIU",
        valor_venta=item.valor_venta,
        descripcion=item.descripcion,
        codigo=item.codigo,
        codigo_sunat=item.codigo_sunat,
        precio=Decimal("0.00") if item.es_gratuito else item.valor_unitario,
        precio_referencial=precio_referencial,
        tipo_precio=tipo_precio,
        impuestos=_build_impuestos_linea(item),
    )


def _build_terminos_pago(documento: Documento) -> List[TerminoPagoUBL]:
    forma_pago = documento.forma_pago
    if forma_pago is None:
        return []

    importe = documento.totales.importe_total
    if not forma_pago.es_credito:
        return [TerminoPagoUBL(medio=forma_pago.tipo or "Contado", monto=importe)]

    terminos = [TerminoPagoUBL(medio="Credito", monto=importe)]
    for idx, cuota in enumerate(forma_pago.cuotas, start=1):
        terminos.append(
            TerminoPagoUBL(
                medio=f"Cuota{idx:03d}",
                monto=cuota.monto,
                fecha_vencimiento=cuota.fecha_vencimiento,
            )
        )
    return terminos


# ============================================================
# API pública
# ============================================================


def convertir_a_ubl(documento: Documento) -> DocumentoUBL:
    """
    Convierte un Documento de negocio a la estructura UBL 2.1 de SUNAT.

    - Valida precondiciones (RUC emisor, receptor, moneda, ítems).
    - Calcula totales si el documento aún no los tiene.
    - Elige la variante (Invoice / CreditNote / DebitNote) según el tipo.
    """
    _check_preconditions(documento)
    variante = seleccionar_variante(documento.tipo)

    if documento.totales is None:
        calcular_totales(documento)
    totales = documento.totales

    referencia: Optional[ReferenciaUBL] = None
    if variante.es_nota and documento.referencia is not None:
        referencia = ReferenciaUBL(
            serie_numero=documento.referencia.serie_numero,
            tipo=documento.referencia.tipo,
            codigo_motivo=documento.referencia.codigo_motivo,
            descripcion_motivo=documento.referencia.descripcion_motivo,
        )

    notas = [documento.observaciones] if documento.observaciones else []

    documento_ubl = DocumentoUBL(
        variante=variante,
        id=documento.serie_numero,
        fecha_emision=documento.fecha_emision,
        fecha_vencimiento=None if variante.es_nota else documento.fecha_vencimiento,
        tipo_codigo=str(documento.tipo),
        moneda=documento.moneda,
        notas=notas,
        referencia=referencia,
        proveedor=_build_proveedor(documento.emisor),
        cliente=_build_cliente(documento.receptor),
        terminos_pago=[] if variante.es_nota else _build_terminos_pago(documento),
        impuestos=_build_impuestos_documento(documento.impuestos),
        totales=TotalMonetarioUBL(
            valor_venta=totales.valor_venta_oneroso,
            total_sin_impuestos=totales.valor_venta_oneroso,
            total_con_impuestos=totales.total_precio_venta,
            descuentos=totales.total_descuentos,
            anticipos=totales.total_anticipos,
            redondeo=totales.redondeo,
            importe_pagar=totales.importe_total,
        ),
        lineas=[_build_linea(item) for item in documento.items],
    )

    logger.info(
        "Comprobante %s convertido a UBL %s (%s líneas)",
        documento.serie_numero,
        variante.root_tag,
        documento_ubl.cantidad_lineas,
    )
    return documento_ubl
