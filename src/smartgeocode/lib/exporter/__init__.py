"""Result artifact export."""

from smartgeocode.lib.exporter.csv_writer import RESULT_COLUMNS, render_csv, render_csv_stream, sample_csv

__all__ = ["RESULT_COLUMNS", "render_csv", "render_csv_stream", "sample_csv"]
