# facturacion/management/commands/emitir_comprobante.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Any, Optional

from django.core.management.base import BaseCommand, CommandError

from facturacion.models import Comprobante
from facturacion.services.sunat.certificado import KeyMaterial, cargar_certificado
from facturacion.services.sunat.config import SunatConfig
from facturacion.services.sunat.exceptions import KeyLoadError, VerificationError
from facturacion.services.sunat.signer import validar_firma
from facturacion.services.sunat.workflow import emitir_comprobante_sync


class Command(BaseCommand):
    help = (
        "Ejecuta el pipeline SUNAT para un comprobante guardado: XML UBL, firma,\n"
        "ZIP y envío (sendBill). Retoma desde el estado actual del comprobante."
    )

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "comprobante_id",
            type=int,
            help="ID del comprobante (facturacion.Comprobante.id)",
        )
        parser.add_argument(
            "--cert",
            dest="cert",
            default=None,
            help="Ruta del certificado .p12/.pfx (por defecto SUNAT_CERTIFICADO_PATH)",
        )
        parser.add_argument(
            "--password",
            dest="password",
            default=None,
            help="Contraseña del certificado (por defecto SUNAT_CERTIFICADO_PASSWORD)",
        )
        parser.add_argument(
            "--solo-xml",
            action="store_true",
            dest="solo_xml",
            help="Solo genera el XML UBL sin firmar ni enviar",
        )
        parser.add_argument(
            "--verificar",
            action="store_true",
            dest="verificar",
            help="Verifica la firma del XML firmado al terminar",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        comprobante_id: int = options["comprobante_id"]

        try:
            comprobante = Comprobante.objects.get(pk=comprobante_id)
        except Comprobante.DoesNotExist:
            raise CommandError(f"No existe Comprobante con id={comprobante_id}")

        self.stdout.write(
            self.style.MIGRATE_HEADING(
                f"▶ Emisión SUNAT para {comprobante.document_id} (estado={comprobante.estado})"
            )
        )

        config = SunatConfig.from_settings()
        if config.modo_simulacion:
            self.stdout.write(self.style.WARNING("Modo simulación activo: no se enviará a SUNAT."))

        key_material: Optional[KeyMaterial] = None
        if not options["solo_xml"]:
            cert_path = options["cert"] or config.certificado_path
            password = options["password"]
            if password is None:
                password = config.certificado_password
            try:
                key_material = cargar_certificado(cert_path, password)
            except KeyLoadError as exc:
                raise CommandError(f"No se pudo cargar el certificado: {exc}")
            self.stdout.write(f"Certificado: {key_material.subject}")

        resultado = emitir_comprobante_sync(
            comprobante,
            key_material,
            config=config,
            solo_xml=options["solo_xml"],
        )

        style = self.style.SUCCESS if resultado["ok"] else self.style.ERROR
        self.stdout.write(
            style(
                f"\nResultado: ok={resultado['ok']} estado={resultado['estado']} "
                f"etapa={resultado.get('etapa') or '-'}"
            )
        )
        for mensaje in resultado.get("mensajes") or []:
            linea = f"  [{mensaje.get('origen')}] {mensaje.get('detalle')}"
            if mensaje.get("error"):
                linea += f" ({mensaje['error']})"
            self.stdout.write(linea)

        if options["verificar"]:
            self._verificar(comprobante)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _verificar(self, comprobante: Comprobante) -> None:
        comprobante.refresh_from_db()
        if not comprobante.xml_firmado:
            self.stderr.write(self.style.ERROR("El comprobante no tiene xml_firmado almacenado."))
            return
        try:
            validar_firma(comprobante.xml_firmado.encode("utf-8"))
        except VerificationError as exc:
            self.stderr.write(self.style.ERROR(f"Firma inválida: {exc}"))
            return
        self.stdout.write(self.style.SUCCESS("Firma XMLDSig válida."))
