# facturacion/services/sunat/totals.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Tuple

from facturacion.services.sunat.documento import (
    Documento,
    Impuesto,
    TipoAfectacion,
    Totales,
)
from facturacion.services.sunat.exceptions import CalculationError

logger = logging.getLogger("facturacion.sunat")

CENTAVO = Decimal("0.01")

# Afectación -> subtotal donde se acumula el valor de venta
AFECTACION_GRAVADA = (TipoAfectacion.GRAVADO_ONEROSO, TipoAfectacion.GRAVADO_IVAP)
AFECTACION_GRATUITA = (TipoAfectacion.GRAVADO_GRATUITO,)
AFECTACION_EXONERADA = (TipoAfectacion.EXONERADO, TipoAfectacion.EXONERADO_IVAP)
AFECTACION_INAFECTA = (
    TipoAfectacion.INAFECTO,
    TipoAfectacion.INAFECTO_IVAP,
    TipoAfectacion.EXPORTACION,
)


def redondear(value: Decimal) -> Decimal:
    """Redondeo comercial al céntimo (mitad hacia arriba)."""
    return value.quantize(CENTAVO, rounding=ROUND_HALF_UP)


def calcular_monto_impuesto(base: Decimal, tasa: Decimal) -> Decimal:
    return redondear(base * tasa / Decimal("100"))


def calcular_totales(documento: Documento) -> Totales:
    """
    Calcula valores por ítem, agrega impuestos y arma los totales del documento.

    Efectos sobre ``documento``:
    - item.valor_venta = cantidad x valor_unitario
    - item.valor_total = valor_venta + descuento_unitario
    - cada impuesto del ítem recibe base (si faltaba) y monto redondeado
    - documento.impuestos: agregados por (tipo_impuesto, codigo_impuesto)
    - documento.totales: ver Totales

    Las operaciones gratuitas suman a total_gratuita e informan su tributo en
    total_impuestos, pero no forman parte del precio a pagar.
    """
    if not documento.items:
        raise CalculationError("El comprobante no tiene ítems para calcular totales")

    totales = Totales()
    agregados: Dict[Tuple[str, str], Impuesto] = {}
    impuestos_gratuitos = Decimal("0")

    try:
        for item in documento.items:
            valor_venta = redondear(item.cantidad * item.valor_unitario)
            item.valor_venta = valor_venta
            item.valor_total = valor_venta + item.descuento_unitario

            afectacion = item.tipo_afectacion
            if afectacion in AFECTACION_GRAVADA:
                totales.total_gravada += valor_venta
            elif afectacion in AFECTACION_GRATUITA:
                totales.total_gratuita += valor_venta
            elif afectacion in AFECTACION_EXONERADA:
                totales.total_exonerada += valor_venta
            elif afectacion in AFECTACION_INAFECTA:
                totales.total_inafecta += valor_venta
            else:
                raise CalculationError(
                    f"Ítem {item.numero}: tipo de afectación desconocido ({afectacion})"
                )

            for impuesto in item.impuestos:
                if impuesto.base_imponible is None:
                    impuesto.base_imponible = valor_venta
                impuesto.monto = calcular_monto_impuesto(
                    impuesto.base_imponible, impuesto.tasa
                )
                if item.es_gratuito:
                    impuestos_gratuitos += impuesto.monto

                key = (impuesto.tipo_impuesto, impuesto.codigo_impuesto)
                acumulado = agregados.get(key)
                if acumulado is None:
                    agregados[key] = Impuesto(
                        tipo_impuesto=impuesto.tipo_impuesto,
                        codigo_impuesto=impuesto.codigo_impuesto,
                        tasa=impuesto.tasa,
                        base_imponible=impuesto.base_imponible,
                        monto=impuesto.monto,
                    )
                else:
                    acumulado.base_imponible += impuesto.base_imponible
                    acumulado.monto += impuesto.monto
    except (TypeError, InvalidOperation) as exc:
        logger.exception("Error calculando totales de %s: %s", documento.serie_numero, exc)
        raise CalculationError(f"Datos numéricos inválidos en ítems: {exc}") from exc

    impuestos: List[Impuesto] = list(agregados.values())
    totales.total_impuestos = sum((i.monto for i in impuestos), Decimal("0.00"))
    totales.total_descuentos = documento.descuentos_globales
    totales.total_anticipos = documento.anticipos
    totales.redondeo = documento.redondeo

    totales.total_valor_venta = (
        totales.total_gravada
        + totales.total_exonerada
        + totales.total_inafecta
        + totales.total_gratuita
    )
    totales.total_precio_venta = totales.valor_venta_oneroso + (
        totales.total_impuestos - impuestos_gratuitos
    )
    totales.importe_total = redondear(
        totales.total_precio_venta
        - totales.total_descuentos
        - totales.total_anticipos
        + totales.redondeo
    )

    documento.impuestos = impuestos
    documento.totales = totales

    logger.debug(
        "Totales %s: gravada=%s gratuita=%s impuestos=%s importe_total=%s",
        documento.serie_numero,
        totales.total_gravada,
        totales.total_gratuita,
        totales.total_impuestos,
        totales.importe_total,
    )
    return totales
