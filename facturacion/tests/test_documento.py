# facturacion/tests/test_documento.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase

from facturacion.services.sunat.documento import (
    Documento,
    EstadoProceso,
    es_estado_terminal,
    validar_transicion,
)
from facturacion.services.sunat.exceptions import SunatError
from facturacion.tests.utils import RUC_EMISOR, datos_factura, documento_factura


class EstadoProcesoTests(SimpleTestCase):
    def test_camino_feliz(self) -> None:
        documento = documento_factura()
        for estado in (
            EstadoProceso.PROCESANDO,
            EstadoProceso.FIRMADO,
            EstadoProceso.ENVIADO,
            EstadoProceso.ACEPTADO,
        ):
            documento.cambiar_estado(estado)
        self.assertEqual(documento.estado, EstadoProceso.ACEPTADO)

    def test_error_desde_estados_no_terminales(self) -> None:
        for estado in (
            EstadoProceso.PENDIENTE,
            EstadoProceso.PROCESANDO,
            EstadoProceso.FIRMADO,
            EstadoProceso.ENVIADO,
        ):
            with self.subTest(estado=estado):
                validar_transicion(estado, EstadoProceso.ERROR)

    def test_estados_terminales_no_cambian(self) -> None:
        for estado in (EstadoProceso.ACEPTADO, EstadoProceso.RECHAZADO, EstadoProceso.ERROR):
            with self.subTest(estado=estado):
                self.assertTrue(es_estado_terminal(estado))
                with self.assertRaises(SunatError):
                    validar_transicion(estado, EstadoProceso.ENVIADO)

    def test_no_se_saltan_etapas(self) -> None:
        with self.assertRaises(SunatError):
            validar_transicion(EstadoProceso.PENDIENTE, EstadoProceso.FIRMADO)
        with self.assertRaises(SunatError):
            validar_transicion(EstadoProceso.FIRMADO, EstadoProceso.ACEPTADO)


class DocumentoTests(SimpleTestCase):
    def test_from_dict(self) -> None:
        documento = documento_factura()

        self.assertEqual(documento.fecha_emision, date(2024, 5, 10))
        self.assertEqual(documento.items[0].cantidad, Decimal("2"))
        self.assertIsNone(documento.items[0].impuestos[0].base_imponible)
        self.assertEqual(documento.document_id, f"{RUC_EMISOR}-01-F001-1")
        self.assertEqual(documento.serie_numero, "F001-1")

    def test_to_dict_reconstruye_el_documento(self) -> None:
        documento = documento_factura()
        copia = Documento.from_dict(documento.to_dict())

        self.assertEqual(copia.to_dict(), documento.to_dict())
        self.assertEqual(copia.to_dict()["items"][0]["valor_unitario"], datos_factura()["items"][0]["valor_unitario"])
