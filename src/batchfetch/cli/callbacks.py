import typer

from batchfetch.models import validate_endpoint


def endpoints_callback(ctx: typer.Context, value: list[str]):
    if ctx.resilient_parsing:
        return
    for endpoint in value:
        try:
            validate_endpoint(endpoint)
        except ValueError as error:
            raise typer.BadParameter(message=str(error), param_hint="ENDPOINTS") from None
    return value


def positive_float_callback(ctx: typer.Context, value: float | None):
    if ctx.resilient_parsing or value is None:
        return value
    if value <= 0:
        raise typer.BadParameter(message=f"'{value}' must be greater than 0")
    return value
