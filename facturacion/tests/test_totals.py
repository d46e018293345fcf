# facturacion/tests/test_totals.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from decimal import Decimal

from django.test import SimpleTestCase

from facturacion.services.sunat.exceptions import CalculationError
from facturacion.services.sunat.totals import calcular_totales, redondear
from facturacion.tests.utils import ITEM_GRATUITO, datos_factura, documento_factura


class CalcularTotalesTests(SimpleTestCase):
    def test_un_item_gravado(self) -> None:
        documento = documento_factura()

        totales = calcular_totales(documento)

        self.assertEqual(totales.total_gravada, Decimal("200.00"))
        self.assertEqual(totales.total_impuestos, Decimal("36.00"))
        self.assertEqual(totales.importe_total, Decimal("236.00"))
        self.assertEqual(documento.items[0].valor_venta, Decimal("200.00"))
        self.assertEqual(documento.items[0].impuestos[0].monto, Decimal("36.00"))
        self.assertIs(documento.totales, totales)

    def test_item_gravado_mas_item_gratuito(self) -> None:
        datos = datos_factura()
        datos["items"].append(ITEM_GRATUITO)
        documento = documento_factura(items=datos["items"])

        totales = calcular_totales(documento)

        self.assertEqual(totales.total_gravada, Decimal("200.00"))
        self.assertEqual(totales.total_gratuita, Decimal("100.00"))
        self.assertEqual(totales.total_impuestos, Decimal("54.00"))
        # Las operaciones gratuitas no forman parte del importe a pagar
        self.assertEqual(totales.importe_total, Decimal("236.00"))
        self.assertEqual(totales.valor_venta_oneroso, Decimal("200.00"))

    def test_impuestos_agregados_por_tributo(self) -> None:
        datos = datos_factura()
        segundo = dict(datos["items"][0], numero=2, cantidad="1", valor_unitario="50")
        datos["items"].append(segundo)
        datos["items"].append(ITEM_GRATUITO)
        documento = documento_factura(items=datos["items"])

        calcular_totales(documento)

        agregados = {(i.tipo_impuesto, i.codigo_impuesto): i for i in documento.impuestos}
        self.assertEqual(list(agregados), [("1000", "S"), ("9996", "Z")])
        self.assertEqual(agregados[("1000", "S")].base_imponible, Decimal("250.00"))
        self.assertEqual(agregados[("1000", "S")].monto, Decimal("45.00"))
        self.assertEqual(agregados[("9996", "Z")].monto, Decimal("18.00"))

    def test_exonerado_y_descuento_global(self) -> None:
        datos = datos_factura(descuentos_globales="10.00")
        datos["items"].append(
            {
                "numero": 2,
                "descripcion": "Libro",
                "cantidad": "3",
                "valor_unitario": "20",
                "tipo_afectacion": "20",
                "impuestos": [{"tipo_impuesto": "9997", "codigo_impuesto": "E", "tasa": "0"}],
            }
        )
        documento = documento_factura(**datos)

        totales = calcular_totales(documento)

        self.assertEqual(totales.total_exonerada, Decimal("60.00"))
        self.assertEqual(totales.total_valor_venta, Decimal("260.00"))
        self.assertEqual(totales.total_precio_venta, Decimal("296.00"))
        self.assertEqual(totales.importe_total, Decimal("286.00"))

    def test_base_explicita_se_respeta(self) -> None:
        datos = datos_factura()
        datos["items"][0]["impuestos"][0]["base_imponible"] = "150"
        documento = documento_factura(items=datos["items"])

        calcular_totales(documento)

        self.assertEqual(documento.items[0].impuestos[0].monto, Decimal("27.00"))

    def test_redondeo_mitad_hacia_arriba(self) -> None:
        self.assertEqual(redondear(Decimal("0.125")), Decimal("0.13"))
        self.assertEqual(redondear(Decimal("0.135")), Decimal("0.14"))
        self.assertEqual(redondear(Decimal("2.674")), Decimal("2.67"))

    def test_sin_items(self) -> None:
        with self.assertRaises(CalculationError):
            calcular_totales(documento_factura(items=[]))

    def test_afectacion_desconocida(self) -> None:
        documento = documento_factura()
        documento.items[0].tipo_afectacion = "99"
        with self.assertRaises(CalculationError):
            calcular_totales(documento)
