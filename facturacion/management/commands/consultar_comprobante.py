# facturacion/management/commands/consultar_comprobante.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Any

from django.core.management.base import BaseCommand, CommandError

from facturacion.models import Comprobante
from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.workflow import consultar_estado_sync


class Command(BaseCommand):
    help = "Consulta en SUNAT (ticket o getStatusCdr) el estado de un comprobante ENVIADO."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "comprobante_id",
            type=int,
            help="ID del comprobante (facturacion.Comprobante.id)",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        comprobante_id: int = options["comprobante_id"]

        try:
            comprobante = Comprobante.objects.get(pk=comprobante_id)
        except Comprobante.DoesNotExist:
            raise CommandError(f"No existe Comprobante con id={comprobante_id}")

        self.stdout.write(
            self.style.MIGRATE_HEADING(
                f"▶ Consulta SUNAT para {comprobante.document_id} "
                f"(estado={comprobante.estado}, ticket={comprobante.ticket_sunat or '-'})"
            )
        )

        resultado = consultar_estado_sync(comprobante, config=SunatConfig.from_settings())

        style = self.style.SUCCESS if resultado["ok"] else self.style.WARNING
        self.stdout.write(style(f"Estado: {resultado['estado']}"))
        if comprobante.codigo_respuesta:
            self.stdout.write(
                f"Código SUNAT: {comprobante.codigo_respuesta} - {comprobante.descripcion_respuesta}"
            )
        for mensaje in resultado.get("mensajes") or []:
            self.stdout.write(f"  [{mensaje.get('origen')}] {mensaje.get('detalle')}")
