# facturacion/models.py
from __future__ import annotations

from typing import Optional

from django.conf import settings
from django.db import models

from facturacion.services.sunat.documento import (
    Documento,
    EstadoProceso,
    Moneda,
    TipoComprobante,
)


class Comprobante(models.Model):
    """
    Comprobante electrónico SUNAT persistido.

    ``datos`` guarda el payload de negocio completo (emisor, receptor, ítems,
    forma de pago...) en el formato de ``Documento.to_dict()``. Las columnas
    tipo/serie/numero/fecha/moneda/RUC se duplican para búsquedas y unicidad.
    Los artefactos del pipeline se guardan en cada cambio de estado.
    """

    Estado = EstadoProceso

    tipo = models.CharField(max_length=2, choices=TipoComprobante.choices)
    serie = models.CharField(max_length=10)
    numero = models.CharField(max_length=8)
    fecha_emision = models.DateField()
    moneda = models.CharField(max_length=3, choices=Moneda.choices, default=Moneda.PEN)
    ruc_emisor = models.CharField(max_length=11, db_index=True)

    datos = models.JSONField(default=dict, blank=True)

    estado = models.CharField(
        max_length=20,
        choices=EstadoProceso.choices,
        default=EstadoProceso.PENDIENTE,
        db_index=True,
    )

    # Artefactos del pipeline
    xml_generado = models.TextField(null=True, blank=True)
    xml_firmado = models.TextField(null=True, blank=True)
    archivo_zip = models.BinaryField(null=True, blank=True)
    ticket_sunat = models.CharField(max_length=64, null=True, blank=True)
    cdr_sunat = models.BinaryField(null=True, blank=True)
    codigo_respuesta = models.CharField(max_length=10, null=True, blank=True)
    descripcion_respuesta = models.TextField(blank=True)
    fecha_envio = models.DateTimeField(null=True, blank=True)
    fecha_respuesta = models.DateTimeField(null=True, blank=True)

    # Mensajes de SUNAT y de errores del pipeline (JSON serializable)
    mensajes = models.JSONField(default=list, blank=True)

    # Auditoría
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    usuario_creacion = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="comprobantes_creados",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    class Meta:
        verbose_name = "Comprobante electrónico"
        verbose_name_plural = "Comprobantes electrónicos"
        ordering = ("-fecha_emision", "-id")
        unique_together = (("ruc_emisor", "tipo", "serie", "numero"),)

    def __str__(self) -> str:
        return f"{self.document_id} [{self.estado}]"

    @property
    def document_id(self) -> str:
        return f"{self.ruc_emisor}-{self.tipo}-{self.serie}-{self.numero}"

    @property
    def es_terminal(self) -> bool:
        return self.estado in (
            EstadoProceso.ACEPTADO,
            EstadoProceso.RECHAZADO,
            EstadoProceso.ERROR,
        )

    @classmethod
    def desde_documento(cls, documento: Documento, usuario=None) -> "Comprobante":
        """Crea (sin guardar) un Comprobante a partir de un Documento de negocio."""
        return cls(
            tipo=str(documento.tipo),
            serie=documento.serie,
            numero=documento.numero,
            fecha_emision=documento.fecha_emision,
            moneda=documento.moneda,
            ruc_emisor=documento.emisor.numero_documento,
            datos=documento.to_dict(),
            usuario_creacion=usuario,
        )

    def to_documento(self) -> Documento:
        """Reconstruye el Documento de negocio con su estado y artefactos actuales."""
        data = dict(self.datos or {})
        data.update(
            {
                "id": str(self.pk) if self.pk else data.get("id"),
                "tipo": self.tipo,
                "serie": self.serie,
                "numero": self.numero,
                "fecha_emision": self.fecha_emision,
                "moneda": self.moneda,
            }
        )
        documento = Documento.from_dict(data)
        documento.emisor.numero_documento = self.ruc_emisor or documento.emisor.numero_documento
        documento.estado = self.estado
        documento.xml_generado = _to_bytes(self.xml_generado)
        documento.xml_firmado = _to_bytes(self.xml_firmado)
        documento.archivo_zip = bytes(self.archivo_zip) if self.archivo_zip else None
        documento.ticket = self.ticket_sunat
        documento.cdr = bytes(self.cdr_sunat) if self.cdr_sunat else None
        return documento


class Lote(models.Model):
    """
    Lote de comprobantes procesados en secuencia por una tarea Celery.

    Invariante: documentos_procesados == documentos_exitosos + documentos_fallidos.
    """

    class Estado(models.TextChoices):
        PENDIENTE = "PENDIENTE", "Pendiente"
        PROCESANDO = "PROCESANDO", "Procesando"
        COMPLETADO = "COMPLETADO", "Completado"
        COMPLETADO_CON_ERRORES = "COMPLETADO_CON_ERRORES", "Completado con errores"

    descripcion = models.CharField(max_length=255, blank=True)
    estado = models.CharField(
        max_length=30,
        choices=Estado.choices,
        default=Estado.PENDIENTE,
        db_index=True,
    )
    comprobantes = models.JSONField(default=list, blank=True)

    total_documentos = models.PositiveIntegerField(default=0)
    documentos_procesados = models.PositiveIntegerField(default=0)
    documentos_exitosos = models.PositiveIntegerField(default=0)
    documentos_fallidos = models.PositiveIntegerField(default=0)

    # Detalle por comprobante: [{"id", "ok", "estado", "etapa", "detalle"}]
    resultados = models.JSONField(default=list, blank=True)
    task_id = models.CharField(max_length=255, null=True, blank=True)

    fecha_inicio = models.DateTimeField(null=True, blank=True)
    fecha_fin = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    usuario_creacion = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="lotes_creados",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    class Meta:
        verbose_name = "Lote de comprobantes"
        verbose_name_plural = "Lotes de comprobantes"
        ordering = ("-created_at",)

    def __str__(self) -> str:
        return f"Lote {self.pk} [{self.estado}] {self.documentos_procesados}/{self.total_documentos}"

    @property
    def porcentaje_avance(self) -> float:
        if not self.total_documentos:
            return 0.0
        return round(self.documentos_procesados * 100.0 / self.total_documentos, 2)


def _to_bytes(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return value.encode("utf-8")
