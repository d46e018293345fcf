# facturacion/tests/test_signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import re

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from django.test import SimpleTestCase
from lxml import etree

from facturacion.services.sunat.certificado import KeyMaterial
from facturacion.services.sunat.exceptions import SigningError, VerificationError
from facturacion.services.sunat.signer import (
    DECLARACION_XML,
    KEY_INFO_ID,
    firmar_xml,
    validar_firma,
    verificar_firma,
)
from facturacion.services.sunat.ubl import NS_DS, NS_EXT
from facturacion.services.sunat.xml_builder import SIGNATURE_ID, generar_xml
from facturacion.tests.utils import (
    certificado_autofirmado,
    clave_rsa,
    documento_factura,
    key_material_ec,
    key_material_prueba,
    key_material_vencido,
)

FIN_EXTENSIONES = b"</ext:UBLExtensions>"


def _cambiar_primer_caracter(xml: bytes, tag: bytes) -> bytes:
    """Cambia el primer carácter base64 del texto de ``tag`` por otro válido."""
    match = re.search(rb"<" + tag + rb">(.)", xml)
    pos = match.start(1)
    nuevo = b"B" if xml[pos:pos + 1] == b"A" else b"A"
    return xml[:pos] + nuevo + xml[pos + 1:]


class FirmarXmlTests(SimpleTestCase):
    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        cls.xml = generar_xml(documento_factura())
        cls.firmado = firmar_xml(cls.xml, key_material_prueba())

    def test_firma_y_verifica(self) -> None:
        self.assertTrue(verificar_firma(self.firmado))
        validar_firma(self.firmado)

    def test_firma_dentro_de_extension_content(self) -> None:
        root = etree.fromstring(self.firmado)
        content = root[0][0][0]

        self.assertEqual(content.tag, f"{{{NS_EXT}}}ExtensionContent")
        signature = content[0]
        self.assertEqual(signature.tag, f"{{{NS_DS}}}Signature")
        self.assertEqual(signature.get("Id"), SIGNATURE_ID)
        self.assertEqual(
            [etree.QName(child).localname for child in signature],
            ["SignedInfo", "SignatureValue", "KeyInfo"],
        )

    def test_resto_del_documento_intacto(self) -> None:
        cuerpo_original = self.xml.split(FIN_EXTENSIONES, 1)[1]
        cuerpo_firmado = self.firmado.split(FIN_EXTENSIONES, 1)[1]

        self.assertEqual(cuerpo_firmado, cuerpo_original)

    def test_cualquier_byte_alterado_invalida_la_firma(self) -> None:
        aceptados = []
        with self.assertLogs("facturacion.sunat", level="WARNING"):
            for pos in range(len(self.firmado)):
                alterado = bytearray(self.firmado)
                alterado[pos] ^= 0x01
                if verificar_firma(bytes(alterado)):
                    aceptados.append(pos)

        self.assertEqual(aceptados, [])

    def test_key_info_cubierto_por_la_firma(self) -> None:
        signature = etree.fromstring(self.firmado).find(f".//{{{NS_DS}}}Signature")
        key_info = signature.find(f"{{{NS_DS}}}KeyInfo")
        referencias = signature.findall(f"{{{NS_DS}}}SignedInfo/{{{NS_DS}}}Reference")

        self.assertEqual(key_info.get("Id"), KEY_INFO_ID)
        self.assertEqual([r.get("URI") for r in referencias], ["", f"#{KEY_INFO_ID}"])

    def test_certificado_reemplazado_con_la_misma_clave(self) -> None:
        otro = certificado_autofirmado(clave_rsa(), cn="OTRA EMPRESA SAC")
        original = re.search(rb"<ds:X509Certificate>([^<]+)<", self.firmado).group(1)
        reemplazo = base64.b64encode(otro.public_bytes(Encoding.DER))

        alterado = self.firmado.replace(original, reemplazo)

        self.assertNotEqual(alterado, self.firmado)
        with self.assertRaises(VerificationError):
            validar_firma(alterado)

    def test_prologo_distinto(self) -> None:
        sin_prologo = self.firmado[len(DECLARACION_XML):].lstrip()
        otra_version = self.firmado.replace(b"version='1.0'", b"version='1.1'", 1)

        self.assertFalse(verificar_firma(sin_prologo))
        self.assertFalse(verificar_firma(otra_version))

    def test_monto_alterado(self) -> None:
        alterado = self.firmado.replace(b">236.00<", b">200.00<")

        self.assertNotEqual(alterado, self.firmado)
        with self.assertRaises(VerificationError):
            validar_firma(alterado)

    def test_digest_value_alterado(self) -> None:
        self.assertFalse(verificar_firma(_cambiar_primer_caracter(self.firmado, b"ds:DigestValue")))

    def test_signature_value_alterado(self) -> None:
        self.assertFalse(verificar_firma(_cambiar_primer_caracter(self.firmado, b"ds:SignatureValue")))

    def test_id_de_firma_distinto_a_la_referencia(self) -> None:
        alterado = self.firmado.replace(
            f'Id="{SIGNATURE_ID}"'.encode(), b'Id="OtraFirma"'
        )

        self.assertFalse(verificar_firma(alterado))

    def test_sin_firma(self) -> None:
        self.assertFalse(verificar_firma(self.xml))
        self.assertFalse(verificar_firma(b""))
        self.assertFalse(verificar_firma(b"<no-cerrado>"))

    def test_no_se_firma_dos_veces(self) -> None:
        with self.assertRaises(SigningError):
            firmar_xml(self.firmado, key_material_prueba())


class FirmarXmlErroresTests(SimpleTestCase):
    def test_clave_no_rsa(self) -> None:
        with self.assertRaises(SigningError):
            firmar_xml(generar_xml(documento_factura()), key_material_ec())

    def test_sin_material(self) -> None:
        with self.assertRaises(SigningError):
            firmar_xml(generar_xml(documento_factura()), None)

    def test_xml_mal_formado(self) -> None:
        with self.assertRaises(SigningError) as ctx:
            firmar_xml(b"<Invoice><cbc:ID>", key_material_prueba())
        self.assertEqual(ctx.exception.etapa, "FIRMA")

    def test_crea_placeholder_si_falta(self) -> None:
        firmado = firmar_xml(b"<Invoice><ID>F001-1</ID></Invoice>", key_material_prueba())

        root = etree.fromstring(firmado)
        self.assertEqual(root[0].tag, f"{{{NS_EXT}}}UBLExtensions")
        self.assertTrue(verificar_firma(firmado))

    def test_certificado_vencido_no_verifica(self) -> None:
        firmado = firmar_xml(generar_xml(documento_factura()), key_material_vencido())

        with self.assertRaises(VerificationError):
            validar_firma(firmado)
        self.assertFalse(verificar_firma(firmado))

    def test_certificado_con_clave_ilegible(self) -> None:
        key = clave_rsa()
        der = certificado_autofirmado(key).public_bytes(Encoding.DER)
        oid_rsa = bytes.fromhex("06092a864886f70d010101")
        self.assertIn(oid_rsa, der)
        corrupto = x509.load_der_x509_certificate(
            der.replace(oid_rsa, bytes.fromhex("060926864886f70d010101"), 1)
        )
        firmado = firmar_xml(
            generar_xml(documento_factura()),
            KeyMaterial(private_key=key, certificate=corrupto),
        )

        with self.assertRaises(VerificationError):
            validar_firma(firmado)
        self.assertFalse(verificar_firma(firmado))

    def test_documento_con_doctype(self) -> None:
        with self.assertRaises(SigningError):
            firmar_xml(b'<!DOCTYPE a [<!ENTITY e "x">]><a>&e;</a>', key_material_prueba())
