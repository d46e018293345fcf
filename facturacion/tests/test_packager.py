# facturacion/tests/test_packager.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import dataclasses
import io
import zipfile

from django.test import SimpleTestCase

from facturacion.services.sunat.exceptions import PackagingError
from facturacion.services.sunat.packager import (
    MAX_XML_BYTES,
    empaquetar,
    extraer_xml_zip,
    validar_paquete,
)
from facturacion.services.sunat.signer import firmar_xml
from facturacion.services.sunat.xml_builder import generar_xml
from facturacion.tests.utils import RUC_EMISOR, documento_factura, key_material_prueba

DOCUMENT_ID = f"{RUC_EMISOR}-01-F001-1"


class EmpaquetarTests(SimpleTestCase):
    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        cls.xml_firmado = firmar_xml(generar_xml(documento_factura()), key_material_prueba())

    def test_paquete_valido(self) -> None:
        paquete = empaquetar(self.xml_firmado, DOCUMENT_ID)

        self.assertEqual(paquete.nombre_zip, f"{DOCUMENT_ID}.zip")
        self.assertEqual(base64.b64decode(paquete.contenido_base64), paquete.zip_bytes)
        with zipfile.ZipFile(io.BytesIO(paquete.zip_bytes)) as zf:
            self.assertEqual(zf.namelist(), [f"{DOCUMENT_ID}.xml"])
            self.assertEqual(zf.getinfo(f"{DOCUMENT_ID}.xml").compress_type, zipfile.ZIP_DEFLATED)
            self.assertEqual(zf.read(f"{DOCUMENT_ID}.xml"), self.xml_firmado)

    def test_extraer_xml(self) -> None:
        paquete = empaquetar(self.xml_firmado, DOCUMENT_ID)

        nombre, contenido = extraer_xml_zip(paquete.zip_bytes)

        self.assertEqual(nombre, paquete.nombre_xml)
        self.assertEqual(contenido, self.xml_firmado)

    def test_sin_nombre(self) -> None:
        with self.assertRaises(PackagingError) as ctx:
            empaquetar(self.xml_firmado, "  ")
        self.assertEqual(ctx.exception.campo, "nombre_archivo")

    def test_xml_vacio(self) -> None:
        with self.assertRaises(PackagingError) as ctx:
            empaquetar(b"", DOCUMENT_ID)
        self.assertEqual(ctx.exception.campo, "xml")

    def test_xml_demasiado_grande(self) -> None:
        with self.assertRaises(PackagingError) as ctx:
            empaquetar(b"x" * (MAX_XML_BYTES + 1), DOCUMENT_ID)
        self.assertEqual(ctx.exception.campo, "xml")


class ValidarPaqueteTests(SimpleTestCase):
    def setUp(self) -> None:
        self.paquete = empaquetar(b"<Invoice/>", DOCUMENT_ID)

    def assertCampo(self, paquete, campo: str) -> None:
        with self.assertRaises(PackagingError) as ctx:
            validar_paquete(paquete)
        self.assertEqual(ctx.exception.campo, campo)
        self.assertEqual(ctx.exception.etapa, "EMPAQUETADO")

    def test_base64_no_corresponde(self) -> None:
        otro = empaquetar(b"<Otro/>", DOCUMENT_ID)
        self.assertCampo(
            dataclasses.replace(self.paquete, contenido_base64=otro.contenido_base64), "base64"
        )

    def test_base64_invalido(self) -> None:
        self.assertCampo(dataclasses.replace(self.paquete, contenido_base64="no*base64"), "base64")

    def test_zip_corrupto(self) -> None:
        basura = b"no es un zip"
        paquete = dataclasses.replace(
            self.paquete,
            zip_bytes=basura,
            contenido_base64=base64.b64encode(basura).decode("ascii"),
        )
        self.assertCampo(paquete, "zip")

    def test_nombre_de_entrada_distinto(self) -> None:
        self.assertCampo(dataclasses.replace(self.paquete, nombre_archivo="OTRO"), "entrada_xml")

    def test_contenido_distinto(self) -> None:
        self.assertCampo(dataclasses.replace(self.paquete, xml_firmado=b"<Otro/>"), "entrada_xml")

    def test_zip_con_dos_xml(self) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, mode="w") as zf:
            zf.writestr(f"{DOCUMENT_ID}.xml", b"<Invoice/>")
            zf.writestr("extra.xml", b"<Extra/>")
        zip_bytes = buffer.getvalue()
        paquete = dataclasses.replace(
            self.paquete,
            zip_bytes=zip_bytes,
            contenido_base64=base64.b64encode(zip_bytes).decode("ascii"),
        )
        self.assertCampo(paquete, "entrada_xml")
