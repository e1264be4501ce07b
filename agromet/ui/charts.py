import altair as alt
import pandas as pd

CHART_LABEL_COLOR = "#cfd6e5"
CHART_GRID_COLOR = "#1f252f"
TEMP_COLOR = "#f97316"
HUMIDITY_COLOR = "#0ea5e9"


def _styled(chart: alt.Chart) -> alt.Chart:
    return (
        chart
        .configure_axis(labelColor=CHART_LABEL_COLOR, titleColor=CHART_LABEL_COLOR, gridColor=CHART_GRID_COLOR)
        .configure_view(strokeWidth=0)
    )


def temperature_chart(df: pd.DataFrame, height: int = 260):
    """Area chart of calibrated temperature; y-axis follows the data range."""
    if df is None or df.empty:
        return None
    base = alt.Chart(df).encode(
        x=alt.X("time:T", title=None, axis=alt.Axis(format="%H:%M", labelOverlap=True)),
        y=alt.Y("temperature:Q", title="°C", scale=alt.Scale(zero=False)),
        tooltip=[
            alt.Tooltip("time:T", title="Time", format="%Y-%m-%d %H:%M"),
            alt.Tooltip("temperature:Q", title="Temperature", format=".1f"),
            alt.Tooltip("raw_temperature:Q", title="Raw", format=".1f"),
        ],
    )
    area = base.mark_area(
        interpolate="monotone",
        line={"color": TEMP_COLOR, "strokeWidth": 2},
        color=alt.Gradient(
            gradient="linear",
            stops=[
                alt.GradientStop(color=TEMP_COLOR, offset=0),
                alt.GradientStop(color="rgba(249,115,22,0)", offset=1),
            ],
            x1=1,
            x2=1,
            y1=0,
            y2=1,
        ),
        opacity=0.4,
    )
    return _styled(area.properties(height=height))


def humidity_chart(df: pd.DataFrame, height: int = 260):
    if df is None or df.empty:
        return None
    line = (
        alt.Chart(df)
        .mark_line(interpolate="monotone", strokeWidth=2, color=HUMIDITY_COLOR)
        .encode(
            x=alt.X("time:T", title=None, axis=alt.Axis(format="%H:%M", labelOverlap=True)),
            y=alt.Y("humidity:Q", title="%", scale=alt.Scale(domain=[0, 100])),
            tooltip=[
                alt.Tooltip("time:T", title="Time", format="%Y-%m-%d %H:%M"),
                alt.Tooltip("humidity:Q", title="Humidity", format=".0f"),
                alt.Tooltip("raw_humidity:Q", title="Raw", format=".0f"),
            ],
        )
        .properties(height=height)
    )
    return _styled(line)
