# facturacion/services/sunat/documento.py
# -*- coding: utf-8 -*-
"""
Modelo de negocio de comprobantes electrónicos SUNAT (independiente del ORM).

- Documento: factura / boleta / nota de crédito / nota de débito.
- Parte: emisor o receptor.
- Item: línea de detalle con sus impuestos.
- Impuesto: tributo por ítem o agregado a nivel de documento.
- Totales: totales monetarios calculados por totals.calcular_totales().
- EstadoProceso: ciclo de vida del comprobante dentro del pipeline.

Cada invocación del pipeline es dueña de su Documento; no se comparte entre
ejecuciones concurrentes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.db import models
from django.utils.dateparse import parse_date

from facturacion.services.sunat.exceptions import SunatError


class TipoComprobante(models.TextChoices):
    """Catálogo 01 SUNAT."""

    FACTURA = "01", "Factura"
    BOLETA = "03", "Boleta de venta"
    NOTA_CREDITO = "07", "Nota de crédito"
    NOTA_DEBITO = "08", "Nota de débito"


class TipoAfectacion(models.TextChoices):
    """Catálogo 07 SUNAT (tipo de afectación del IGV)."""

    GRAVADO_ONEROSO = "10", "Gravado - Operación onerosa"
    GRAVADO_GRATUITO = "11", "Gravado - Operación gratuita"
    EXONERADO = "20", "Exonerado - Operación onerosa"
    INAFECTO = "30", "Inafecto - Operación onerosa"
    EXPORTACION = "40", "Exportación"
    GRAVADO_IVAP = "17", "Gravado - IVAP"
    EXONERADO_IVAP = "27", "Exonerado - IVAP"
    INAFECTO_IVAP = "37", "Inafecto - IVAP"


class TipoDocumentoIdentidad(models.TextChoices):
    """Catálogo 06 SUNAT."""

    SIN_DOCUMENTO = "0", "Sin documento"
    DNI = "1", "DNI"
    CARNET_EXTRANJERIA = "4", "Carnet de extranjería"
    RUC = "6", "RUC"
    PASAPORTE = "7", "Pasaporte"


class Moneda(models.TextChoices):
    PEN = "PEN", "Soles"
    USD = "USD", "Dólares americanos"
    EUR = "EUR", "Euros"


class EstadoProceso(models.TextChoices):
    PENDIENTE = "PENDIENTE", "Pendiente"
    PROCESANDO = "PROCESANDO", "Procesando"
    FIRMADO = "FIRMADO", "Firmado"
    ENVIADO = "ENVIADO", "Enviado a SUNAT"
    ACEPTADO = "ACEPTADO", "Aceptado por SUNAT"
    RECHAZADO = "RECHAZADO", "Rechazado por SUNAT"
    ERROR = "ERROR", "Error técnico"


TRANSICIONES: Dict[str, tuple] = {
    EstadoProceso.PENDIENTE.value: (EstadoProceso.PROCESANDO, EstadoProceso.ERROR),
    EstadoProceso.PROCESANDO.value: (EstadoProceso.FIRMADO, EstadoProceso.ERROR),
    EstadoProceso.FIRMADO.value: (EstadoProceso.ENVIADO, EstadoProceso.ERROR),
    EstadoProceso.ENVIADO.value: (
        EstadoProceso.ACEPTADO,
        EstadoProceso.RECHAZADO,
        EstadoProceso.ERROR,
    ),
    EstadoProceso.ACEPTADO.value: (),
    EstadoProceso.RECHAZADO.value: (),
    EstadoProceso.ERROR.value: (),
}

ESTADOS_TERMINALES = (
    EstadoProceso.ACEPTADO,
    EstadoProceso.RECHAZADO,
    EstadoProceso.ERROR,
)


def validar_transicion(actual: str, nuevo: str) -> None:
    """
    Verifica que el paso actual -> nuevo respete el ciclo de vida:

        PENDIENTE -> PROCESANDO -> FIRMADO -> ENVIADO -> {ACEPTADO, RECHAZADO}

    con ERROR alcanzable desde cualquier estado no terminal.
    """
    permitidos = TRANSICIONES.get(str(actual))
    if permitidos is None:
        raise SunatError(f"Estado de proceso desconocido: {actual!r}")
    if nuevo not in permitidos:
        raise SunatError(
            f"Transición de estado inválida: {actual} -> {nuevo}",
            etapa="ESTADO",
        )


def es_estado_terminal(estado: str) -> bool:
    return estado in ESTADOS_TERMINALES


# ============================================================
# Helpers de conversión
# ============================================================


def to_decimal(value: Any, campo: str = "valor") -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise SunatError(f"Valor numérico inválido en {campo}: {value!r}") from exc


def _to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value)[:10])
    if parsed is None:
        raise SunatError(f"Fecha inválida: {value!r}")
    return parsed


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


# ============================================================
# Entidades
# ============================================================


@dataclass
class Parte:
    tipo_documento: str
    numero_documento: str
    razon_social: str
    nombre_comercial: str = ""
    direccion: str = ""
    distrito: str = ""
    provincia: str = ""
    departamento: str = ""
    ubigeo: str = ""
    codigo_pais: str = "PE"
    telefono: str = ""
    email: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Parte":
        return cls(
            tipo_documento=str(data.get("tipo_documento") or ""),
            numero_documento=str(data.get("numero_documento") or ""),
            razon_social=data.get("razon_social") or "",
            nombre_comercial=data.get("nombre_comercial") or "",
            direccion=data.get("direccion") or "",
            distrito=data.get("distrito") or "",
            provincia=data.get("provincia") or "",
            departamento=data.get("departamento") or "",
            ubigeo=data.get("ubigeo") or "",
            codigo_pais=data.get("codigo_pais") or "PE",
            telefono=data.get("telefono") or "",
            email=data.get("email") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tipo_documento": self.tipo_documento,
            "numero_documento": self.numero_documento,
            "razon_social": self.razon_social,
            "nombre_comercial": self.nombre_comercial,
            "direccion": self.direccion,
            "distrito": self.distrito,
            "provincia": self.provincia,
            "departamento": self.departamento,
            "ubigeo": self.ubigeo,
            "codigo_pais": self.codigo_pais,
            "telefono": self.telefono,
            "email": self.email,
        }


@dataclass
class Impuesto:
    """
    Tributo (catálogo 05) de un ítem o agregado por documento.

    - tipo_impuesto: código de tributo (1000 IGV, 9996 GRA, 9997 EXO, ...).
    - codigo_impuesto: categoría (S, E, O, Z, G).
    - base_imponible: None en un ítem significa "usar el valor de venta".
    """

    tipo_impuesto: str
    codigo_impuesto: str
    tasa: Decimal = Decimal("0")
    base_imponible: Optional[Decimal] = None
    monto: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Impuesto":
        base = data.get("base_imponible")
        return cls(
            tipo_impuesto=str(data.get("tipo_impuesto") or ""),
            codigo_impuesto=str(data.get("codigo_impuesto") or ""),
            tasa=to_decimal(data.get("tasa"), "tasa"),
            base_imponible=None if base in (None, "") else to_decimal(base, "base_imponible"),
            monto=to_decimal(data.get("monto"), "monto"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tipo_impuesto": self.tipo_impuesto,
            "codigo_impuesto": self.codigo_impuesto,
            "tasa": _dec_str(self.tasa),
            "base_imponible": _dec_str(self.base_imponible),
            "monto": _dec_str(self.monto),
        }


@dataclass
class Item:
    numero: int
    codigo: str
    descripcion: str
    cantidad: Decimal
    valor_unitario: Decimal
    precio_unitario: Decimal = Decimal("0")
    unidad_medida: str = "NIU"
    descuento_unitario: Decimal = Decimal("0")
    tipo_afectacion: str = TipoAfectacion.GRAVADO_ONEROSO
    codigo_sunat: str = ""
    impuestos: List[Impuesto] = field(default_factory=list)
    # Calculados
    valor_venta: Decimal = Decimal("0")
    valor_total: Decimal = Decimal("0")

    @property
    def es_gratuito(self) -> bool:
        return self.tipo_afectacion == TipoAfectacion.GRAVADO_GRATUITO

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            numero=int(data.get("numero") or 0),
            codigo=data.get("codigo") or "",
            descripcion=data.get("descripcion") or "",
            cantidad=to_decimal(data.get("cantidad"), "cantidad"),
            valor_unitario=to_decimal(data.get("valor_unitario"), "valor_unitario"),
            precio_unitario=to_decimal(data.get("precio_unitario"), "precio_unitario"),
            unidad_medida=data.get("unidad_medida") or "NIU",
            descuento_unitario=to_decimal(
                data.get("descuento_unitario"), "descuento_unitario"
            ),
            tipo_afectacion=str(
                data.get("tipo_afectacion") or TipoAfectacion.GRAVADO_ONEROSO
            ),
            codigo_sunat=data.get("codigo_sunat") or "",
            impuestos=[Impuesto.from_dict(i) for i in data.get("impuestos") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "numero": self.numero,
            "codigo": self.codigo,
            "descripcion": self.descripcion,
            "cantidad": _dec_str(self.cantidad),
            "valor_unitario": _dec_str(self.valor_unitario),
            "precio_unitario": _dec_str(self.precio_unitario),
            "unidad_medida": self.unidad_medida,
            "descuento_unitario": _dec_str(self.descuento_unitario),
            "tipo_afectacion": str(self.tipo_afectacion),
            "codigo_sunat": self.codigo_sunat,
            "impuestos": [i.to_dict() for i in self.impuestos],
        }


@dataclass
class Totales:
    total_gravada: Decimal = Decimal("0.00")
    total_exonerada: Decimal = Decimal("0.00")
    total_inafecta: Decimal = Decimal("0.00")
    total_gratuita: Decimal = Decimal("0.00")
    total_descuentos: Decimal = Decimal("0.00")
    total_anticipos: Decimal = Decimal("0.00")
    total_impuestos: Decimal = Decimal("0.00")
    total_valor_venta: Decimal = Decimal("0.00")
    total_precio_venta: Decimal = Decimal("0.00")
    redondeo: Decimal = Decimal("0.00")
    importe_total: Decimal = Decimal("0.00")

    @property
    def valor_venta_oneroso(self) -> Decimal:
        """Valor de venta que se cobra (excluye operaciones gratuitas)."""
        return self.total_gravada + self.total_exonerada + self.total_inafecta

    def to_dict(self) -> Dict[str, str]:
        return {name: str(value) for name, value in self.__dict__.items()}


@dataclass
class Cuota:
    numero: int
    monto: Decimal
    fecha_vencimiento: date

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cuota":
        return cls(
            numero=int(data.get("numero") or 0),
            monto=to_decimal(data.get("monto"), "monto"),
            fecha_vencimiento=_to_date(data.get("fecha_vencimiento")),
        )


@dataclass
class FormaPago:
    """Forma de pago: 'Contado' o 'Credito' (con cuotas)."""

    tipo: str = "Contado"
    cuotas: List[Cuota] = field(default_factory=list)

    @property
    def es_credito(self) -> bool:
        return self.tipo.strip().lower() == "credito" and bool(self.cuotas)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormaPago":
        return cls(
            tipo=data.get("tipo") or "Contado",
            cuotas=[Cuota.from_dict(c) for c in data.get("cuotas") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tipo": self.tipo,
            "cuotas": [
                {
                    "numero": c.numero,
                    "monto": str(c.monto),
                    "fecha_vencimiento": c.fecha_vencimiento.isoformat()
                    if c.fecha_vencimiento
                    else None,
                }
                for c in self.cuotas
            ],
        }


@dataclass
class DocumentoReferencia:
    """Comprobante afectado por una nota de crédito/débito."""

    tipo: str
    serie_numero: str
    codigo_motivo: str
    descripcion_motivo: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentoReferencia":
        return cls(
            tipo=str(data.get("tipo") or TipoComprobante.FACTURA),
            serie_numero=data.get("serie_numero") or "",
            codigo_motivo=str(data.get("codigo_motivo") or ""),
            descripcion_motivo=data.get("descripcion_motivo") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tipo": self.tipo,
            "serie_numero": self.serie_numero,
            "codigo_motivo": self.codigo_motivo,
            "descripcion_motivo": self.descripcion_motivo,
        }


@dataclass
class Documento:
    tipo: str
    serie: str
    numero: str
    fecha_emision: date
    moneda: str
    emisor: Parte
    receptor: Parte
    items: List[Item] = field(default_factory=list)
    id: Optional[str] = None
    fecha_vencimiento: Optional[date] = None
    observaciones: str = ""
    forma_pago: Optional[FormaPago] = None
    referencia: Optional[DocumentoReferencia] = None
    descuentos_globales: Decimal = Decimal("0")
    anticipos: Decimal = Decimal("0")
    redondeo: Decimal = Decimal("0")
    # Calculados / artefactos del pipeline
    impuestos: List[Impuesto] = field(default_factory=list)
    totales: Optional[Totales] = None
    estado: str = EstadoProceso.PENDIENTE
    xml_generado: Optional[bytes] = None
    xml_firmado: Optional[bytes] = None
    archivo_zip: Optional[bytes] = None
    ticket: Optional[str] = None
    cdr: Optional[bytes] = None

    @property
    def serie_numero(self) -> str:
        return f"{self.serie}-{self.numero}"

    @property
    def document_id(self) -> str:
        """Nombre SUNAT: {RUC}-{tipo}-{serie}-{numero}."""
        return f"{self.emisor.numero_documento}-{self.tipo}-{self.serie}-{self.numero}"

    def cambiar_estado(self, nuevo: str) -> None:
        validar_transicion(self.estado, nuevo)
        self.estado = nuevo

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Documento":
        forma_pago = data.get("forma_pago")
        referencia = data.get("referencia")
        return cls(
            id=data.get("id"),
            tipo=str(data.get("tipo") or TipoComprobante.FACTURA),
            serie=data.get("serie") or "",
            numero=str(data.get("numero") or ""),
            fecha_emision=_to_date(data.get("fecha_emision")),
            fecha_vencimiento=_to_date(data.get("fecha_vencimiento")),
            moneda=data.get("moneda") or "",
            emisor=Parte.from_dict(data.get("emisor") or {}),
            receptor=Parte.from_dict(data.get("receptor") or {}),
            items=[Item.from_dict(i) for i in data.get("items") or []],
            observaciones=data.get("observaciones") or "",
            forma_pago=FormaPago.from_dict(forma_pago) if forma_pago else None,
            referencia=DocumentoReferencia.from_dict(referencia) if referencia else None,
            descuentos_globales=to_decimal(
                data.get("descuentos_globales"), "descuentos_globales"
            ),
            anticipos=to_decimal(data.get("anticipos"), "anticipos"),
            redondeo=to_decimal(data.get("redondeo"), "redondeo"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Payload de negocio serializable a JSON (sin artefactos del pipeline)."""
        return {
            "id": self.id,
            "tipo": str(self.tipo),
            "serie": self.serie,
            "numero": self.numero,
            "fecha_emision": self.fecha_emision.isoformat() if self.fecha_emision else None,
            "fecha_vencimiento": self.fecha_vencimiento.isoformat()
            if self.fecha_vencimiento
            else None,
            "moneda": self.moneda,
            "emisor": self.emisor.to_dict(),
            "receptor": self.receptor.to_dict(),
            "items": [i.to_dict() for i in self.items],
            "observaciones": self.observaciones,
            "forma_pago": self.forma_pago.to_dict() if self.forma_pago else None,
            "referencia": self.referencia.to_dict() if self.referencia else None,
            "descuentos_globales": str(self.descuentos_globales),
            "anticipos": str(self.anticipos),
            "redondeo": str(self.redondeo),
        }
