# facturacion/services/sunat/ubl.py
# -*- coding: utf-8 -*-
"""
Estructura UBL 2.1 (perfil SUNAT) usada entre el conversor y el serializador.

Las tres variantes (Invoice, CreditNote, DebitNote) comparten casi toda la
estructura; lo que cambia se concentra en ``VarianteUBL``, que se elige una
sola vez al convertir.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

UBL_VERSION = "2.1"
CUSTOMIZATION_ID = "2.0"

NS_CAC = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
NS_CBC = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
NS_EXT = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"

NS_INVOICE = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
NS_CREDIT_NOTE = "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2"
NS_DEBIT_NOTE = "urn:oasis:names:specification:ubl:schema:xsd:DebitNote-2"

# Catálogo 06 (documentos de identidad)
SCHEME_NAME_IDENTIDAD = "Documento de Identidad"
SCHEME_AGENCY_SUNAT = "PE:SUNAT"
SCHEME_URI_CATALOGO06 = "urn:pe:gob:sunat:cpe:see:gem:catalogos:catalogo06"

# Catálogo 05 (tributos)
SCHEME_ID_TRIBUTOS = "UN/ECE 5153"
SCHEME_NAME_TRIBUTOS = "Codigo de tributos"

# Catálogo 05: código -> (nombre, código internacional)
TRIBUTOS = {
    "1000": ("IGV", "VAT"),
    "1016": ("IVAP", "VAT"),
    "2000": ("ISC", "EXC"),
    "9995": ("EXP", "FRE"),
    "9996": ("GRA", "FRE"),
    "9997": ("EXO", "VAT"),
    "9998": ("INA", "FRE"),
    "9999": ("OTROS", "OTH"),
}

LIST_AGENCY_SUNAT = "PE:SUNAT"
LIST_NAME_TIPO_DOCUMENTO = "Tipo de Documento"
LIST_URI_CATALOGO01 = "urn:pe:gob:sunat:cpe:see:gem:catalogos:catalogo01"


@dataclass(frozen=True)
class VarianteUBL:
    """Discriminante de la forma UBL elegida para el comprobante."""

    root_tag: str
    namespace: str
    type_code_tag: str
    line_tag: str
    quantity_tag: str
    monetary_total_tag: str
    es_nota: bool = False


VARIANTE_INVOICE = VarianteUBL(
    root_tag="Invoice",
    namespace=NS_INVOICE,
    type_code_tag="InvoiceTypeCode",
    line_tag="InvoiceLine",
    quantity_tag="InvoicedQuantity",
    monetary_total_tag="LegalMonetaryTotal",
)

VARIANTE_CREDIT_NOTE = VarianteUBL(
    root_tag="CreditNote",
    namespace=NS_CREDIT_NOTE,
    type_code_tag="CreditNoteTypeCode",
    line_tag="CreditNoteLine",
    quantity_tag="CreditedQuantity",
    monetary_total_tag="LegalMonetaryTotal",
    es_nota=True,
)

VARIANTE_DEBIT_NOTE = VarianteUBL(
    root_tag="DebitNote",
    namespace=NS_DEBIT_NOTE,
    type_code_tag="DebitNoteTypeCode",
    line_tag="DebitNoteLine",
    quantity_tag="DebitedQuantity",
    monetary_total_tag="RequestedMonetaryTotal",
    es_nota=True,
)


@dataclass
class IdentificadorUBL:
    valor: str
    scheme_id: str
    scheme_name: str = SCHEME_NAME_IDENTIDAD
    scheme_agency_name: str = SCHEME_AGENCY_SUNAT
    scheme_uri: Optional[str] = SCHEME_URI_CATALOGO06


@dataclass
class DireccionUBL:
    linea: str = ""
    ubigeo: str = ""
    distrito: str = ""
    provincia: str = ""
    departamento: str = ""
    codigo_pais: str = "PE"


@dataclass
class ParteUBL:
    identificador: IdentificadorUBL
    razon_social: str
    nombre_comercial: str = ""
    direccion: Optional[DireccionUBL] = None
    telefono: str = ""
    email: str = ""


@dataclass
class SubtotalImpuestoUBL:
    base: Decimal
    monto: Decimal
    categoria: str
    tributo_id: str
    tributo_nombre: str
    tributo_codigo: str
    porcentaje: Optional[Decimal] = None
    motivo_exoneracion: Optional[str] = None


@dataclass
class TotalImpuestoUBL:
    monto: Decimal
    subtotales: List[SubtotalImpuestoUBL] = field(default_factory=list)


@dataclass
class TotalMonetarioUBL:
    valor_venta: Decimal
    total_sin_impuestos: Decimal
    total_con_impuestos: Decimal
    descuentos: Decimal
    anticipos: Decimal
    redondeo: Decimal
    importe_pagar: Decimal


@dataclass
class TerminoPagoUBL:
    medio: str
    monto: Decimal
    fecha_vencimiento: Optional[date] = None


@dataclass
class ReferenciaUBL:
    serie_numero: str
    tipo: str
    codigo_motivo: str
    descripcion_motivo: str


@dataclass
class LineaUBL:
    id: str
    cantidad: Decimal
    unidad: str
    valor_venta: Decimal
    descripcion: str
    codigo: str
    precio: Decimal
    codigo_sunat: str = ""
    precio_referencial: Optional[Decimal] = None
    tipo_precio: str = "01"
    impuestos: Optional[TotalImpuestoUBL] = None


@dataclass
class DocumentoUBL:
    variante: VarianteUBL
    id: str
    fecha_emision: date
    tipo_codigo: str
    moneda: str
    proveedor: ParteUBL
    cliente: ParteUBL
    totales: TotalMonetarioUBL
    lineas: List[LineaUBL] = field(default_factory=list)
    impuestos: List[TotalImpuestoUBL] = field(default_factory=list)
    fecha_vencimiento: Optional[date] = None
    notas: List[str] = field(default_factory=list)
    terminos_pago: List[TerminoPagoUBL] = field(default_factory=list)
    referencia: Optional[ReferenciaUBL] = None
    version: str = UBL_VERSION
    customization_id: str = CUSTOMIZATION_ID

    @property
    def cantidad_lineas(self) -> int:
        return len(self.lineas)
