"""设计稿渲染与导出服务 - 命令行入口."""

from __future__ import annotations

import asyncio
import shutil
import sys
from pathlib import Path
from typing import Any, Optional

import click

from design_export.app import CONVERTER_BACKENDS, Application
from design_export.models.design import Design
from design_export.models.export_job import ExportFormat, ExportQuality, JobStatus
from design_export.utils.constants import APP_NAME, APP_VERSION
from design_export.utils.error_handler import get_user_friendly_message
from design_export.utils.exceptions import AppException
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)


@click.group(help=f"{APP_NAME}: 将设计稿渲染并导出为图片、PDF 或视频。")
@click.version_option(APP_VERSION, prog_name="design-export")
def cli() -> None:
    pass


@cli.command(help="导出一个设计稿 JSON 文件并输出最终任务状态。")
@click.argument("design_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--format", "export_format", type=str, default="png", show_default=True, help="导出格式")
@click.option("--quality", type=click.Choice([q.value for q in ExportQuality]), default=ExportQuality.HIGH.value, show_default=True, help="质量档位")
@click.option("--width", type=click.IntRange(min=1), default=None, help="输出宽度")
@click.option("--height", type=click.IntRange(min=1), default=None, help="输出高度")
@click.option("--scale", type=click.FloatRange(min=0, min_open=True), default=None, help="缩放比例（未指定宽高时生效）")
@click.option("--transparent", is_flag=True, default=False, help="透明背景")
@click.option("--background", "background_color", type=str, default=None, help="背景色覆盖，如 #ffffff")
@click.option("--converter", type=click.Choice(CONVERTER_BACKENDS), default="imagemagick", show_default=True, help="转换器实现")
@click.option("--requester", "requester_id", type=str, default="cli", show_default=True, help="请求者ID")
@click.option("--out", "out_path", type=click.Path(dir_okay=False, path_type=Path), default=None, help="将产物复制到指定路径")
def export(
    design_path: Path,
    export_format: str,
    quality: str,
    width: Optional[int],
    height: Optional[int],
    scale: Optional[float],
    transparent: bool,
    background_color: Optional[str],
    converter: str,
    requester_id: str,
    out_path: Optional[Path],
) -> None:
    options: dict[str, Any] = {"quality": quality, "transparent": transparent}
    if width is not None:
        options["width"] = width
    if height is not None:
        options["height"] = height
    if scale is not None:
        options["scale"] = scale
    if background_color is not None:
        options["background_color"] = background_color

    try:
        design = Design.from_file(str(design_path))
    except (OSError, ValueError) as e:
        raise click.ClickException(f"无法读取设计稿 {design_path}: {e}")

    app = Application(converter_backend=converter)
    try:
        exit_code = asyncio.run(
            _run_export(app, design, requester_id, export_format, options, out_path)
        )
    except AppException as e:
        raise click.ClickException(get_user_friendly_message(e))
    sys.exit(exit_code)


async def _run_export(
    app: Application,
    design: Design,
    requester_id: str,
    export_format: str,
    options: dict[str, Any],
    out_path: Optional[Path],
) -> int:
    """在事件循环内完成一次导出，返回退出码."""
    app.initialize()
    try:
        app.designs.add(design)
        job = await app.controller.create(design.id, requester_id, export_format, options)

        app.worker_pool.start()
        await app.worker_pool.join()

        view = app.controller.get_status(job.id)
        click.echo(view.model_dump_json(indent=2))

        if view.status != JobStatus.COMPLETED:
            return 1
        if out_path is not None:
            handle = app.controller.open_artifact(job.id)
            with handle.open() as src, open(out_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
            click.echo(f"已保存: {out_path}")
        return 0
    finally:
        await app.shutdown()


@cli.command(help="列出支持的导出格式。")
def formats() -> None:
    for name in ExportFormat.accepted_names():
        fmt = ExportFormat.parse(name)
        kind = "video" if fmt.is_video else "image"
        click.echo(f"{name:<6} {fmt.mime_type:<20} {kind}")


@cli.command(help="清理已过期的导出任务和产物文件。")
def purge() -> None:
    app = Application()
    app.initialize()
    try:
        count = app.controller.purge_expired()
    finally:
        app.cleanup()
    click.echo(f"已清理 {count} 个过期任务")


def main() -> None:
    """应用主入口函数."""
    cli()


if __name__ == "__main__":
    main()
