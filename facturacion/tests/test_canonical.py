# facturacion/tests/test_canonical.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.test import SimpleTestCase
from lxml import etree

from facturacion.services.sunat.canonical import canonicalizar, canonicalizar_elemento
from facturacion.services.sunat.exceptions import CanonicalizationError
from facturacion.services.sunat.xml_builder import generar_xml
from facturacion.tests.utils import documento_factura

MUESTRAS = [
    b"<a/>",
    b'<?xml version="1.0" encoding="UTF-8"?>\n<a>\n  <b x="1">texto</b>\n  <!-- nota -->\n  <c/>\n</a>\n',
    b'<r xmlns="urn:x" xmlns:p="urn:p"><p:e>  con espacios  </p:e>\n\t<p:f/></r>',
    "<raíz><ñandú>año</ñandú></raíz>".encode("utf-8"),
]


class CanonicalizarTests(SimpleTestCase):
    def test_idempotente(self) -> None:
        for muestra in MUESTRAS + [generar_xml(documento_factura())]:
            with self.subTest(muestra=muestra[:40]):
                una_vez = canonicalizar(muestra)
                self.assertEqual(canonicalizar(una_vez), una_vez)

    def test_quita_declaracion_comentarios_y_espacios_entre_etiquetas(self) -> None:
        resultado = canonicalizar(MUESTRAS[1])

        self.assertEqual(resultado, b'<a><b x="1">texto</b><c/></a>')

    def test_conserva_texto_con_contenido(self) -> None:
        resultado = canonicalizar(MUESTRAS[2])

        self.assertIn(b"<p:e>  con espacios  </p:e>", resultado)

    def test_elemento_suelto_igual_que_documento(self) -> None:
        root = etree.fromstring(b'<r xmlns:p="urn:p" xmlns:q="urn:q"><p:e a="1"><p:f/></p:e></r>')

        resultado = canonicalizar_elemento(root[0])

        self.assertEqual(resultado, b'<p:e xmlns:p="urn:p" a="1"><p:f/></p:e>')

    def test_entrada_vacia_o_invalida(self) -> None:
        for muestra in (b"", b"   ", b"<a><b></a>"):
            with self.subTest(muestra=muestra):
                with self.assertRaises(CanonicalizationError):
                    canonicalizar(muestra)

    def test_rechaza_doctype(self) -> None:
        muestras = (
            b'<!DOCTYPE a [<!ENTITY e "x">]><a>&e;</a>',
            b'<!DOCTYPE a SYSTEM "a.dtd"><a/>',
        )
        for muestra in muestras:
            with self.subTest(muestra=muestra):
                with self.assertRaises(CanonicalizationError):
                    canonicalizar(muestra)
