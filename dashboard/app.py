"""
Token Viewer Dashboard.

Two tabs:
  1. Records: pick a JSONL record file (or cached latent examples) and
     browse its token activation views
  2. Free Text: paste tokens and activations directly

Run from the repo root:
    python -m dashboard.app [config=path/to/dashboard.yaml] [key=value ...]
"""

import logging
import sys

import gradio as gr

from dashboard.backend import (
    click_token,
    configure,
    hover_token,
    leave_token,
    list_cached_hookpoints,
    list_record_files,
    load_cached_examples,
    load_record_file,
    render_free_text,
    save_current_record,
    select_record,
    state,
    toggle_expand,
    update_viewer_config,
    viewer_stats,
)
from tokenviewer.config import load_dashboard_config

logging.basicConfig(
    format='%(asctime)s - %(levelname)s - %(message)s',
    level=logging.INFO
)

DEFAULT_CONFIG = "config/dashboard.yaml"


# ------------------------------------------------------------------
# Helpers wired to Gradio events
# ------------------------------------------------------------------
def _on_load_file(path):
    status, choices = load_record_file(path)
    return status, gr.update(choices=choices, value=choices[0] if choices else None)


def _on_load_cached(hookpoint, latent_idx, n_examples):
    if latent_idx is None:
        return "Enter a latent index.", gr.update(choices=[])
    status, choices = load_cached_examples(hookpoint, int(latent_idx), int(n_examples))
    return status, gr.update(choices=choices, value=choices[0] if choices else None)


def _on_select_record(label):
    return select_record(label), viewer_stats()


def _on_settings_change(shorthand, percentile):
    return update_viewer_config(shorthand, percentile), viewer_stats()


def _on_toggle():
    return toggle_expand(), viewer_stats()


def _on_free_text(tokens_raw, activations_raw):
    return render_free_text(tokens_raw, activations_raw), viewer_stats()


def build_demo() -> gr.Blocks:
    record_files = list_record_files()
    hookpoints = list_cached_hookpoints()
    viewer_cfg = state.viewer_config

    with gr.Blocks(title="Token Viewer") as demo:
        gr.Markdown("# Token Viewer")

        with gr.Row():
            shorthand_cb = gr.Checkbox(label="Shorthand", value=viewer_cfg.shorthand)
            percentile_sl = gr.Slider(
                label="Highlight percentile",
                minimum=1,
                maximum=100,
                step=1,
                value=viewer_cfg.activation_percentile,
            )

        # ---- Tab 1: Records ----
        with gr.Tab("Records"):
            with gr.Row():
                file_dd = gr.Dropdown(
                    label="Record file",
                    choices=record_files,
                    value=record_files[0] if record_files else None,
                    allow_custom_value=True,
                )
                load_btn = gr.Button("Load", variant="primary")
            with gr.Row():
                cached_dd = gr.Dropdown(
                    label="Cached hookpoint",
                    choices=hookpoints,
                    value=hookpoints[0] if hookpoints else None,
                )
                latent_num = gr.Number(label="Latent index", value=0, precision=0)
                n_examples_num = gr.Number(
                    label="Number of examples",
                    value=state.config.n_examples,
                    precision=0,
                )
                load_cached_btn = gr.Button("Load Top Examples")
            status_tb = gr.Textbox(label="Status", interactive=False)
            record_dd = gr.Dropdown(label="Record", choices=[])

        # ---- Tab 2: Free Text ----
        with gr.Tab("Free Text"):
            tokens_tb = gr.Textbox(
                label="Tokens (separated by |, \\n for a newline)",
                placeholder="The| cat| sat|\\n|on| the| mat",
                lines=3,
            )
            acts_tb = gr.Textbox(
                label="Activations (comma separated, optional)",
                placeholder="0.1, 0.2, 3.5, 0.0, 0.1, 0.4, 0.2",
                lines=2,
            )
            free_btn = gr.Button("Show", variant="primary")
            with gr.Row():
                save_id_tb = gr.Textbox(label="Record id", placeholder="my_example")
                save_btn = gr.Button("Save to records", size="sm")
            save_status_tb = gr.Textbox(label="Save status", interactive=False)

        viewer_html = gr.HTML(label="Tokens")
        stats_md = gr.Markdown()
        with gr.Row():
            toggle_btn = gr.Button("Expand / Collapse", size="sm")
            unit_num = gr.Number(label="Unit index", value=0, precision=0)
            hover_btn = gr.Button("Hover", size="sm")
            leave_btn = gr.Button("Leave", size="sm")
            click_btn = gr.Button("Click", size="sm")
        tooltip_tb = gr.Textbox(label="Tooltip", interactive=False)

        # ---- Wiring ----
        load_btn.click(
            fn=_on_load_file,
            inputs=[file_dd],
            outputs=[status_tb, record_dd],
        )
        load_cached_btn.click(
            fn=_on_load_cached,
            inputs=[cached_dd, latent_num, n_examples_num],
            outputs=[status_tb, record_dd],
        )
        record_dd.change(
            fn=_on_select_record,
            inputs=[record_dd],
            outputs=[viewer_html, stats_md],
        )
        shorthand_cb.change(
            fn=_on_settings_change,
            inputs=[shorthand_cb, percentile_sl],
            outputs=[viewer_html, stats_md],
        )
        percentile_sl.release(
            fn=_on_settings_change,
            inputs=[shorthand_cb, percentile_sl],
            outputs=[viewer_html, stats_md],
        )
        free_btn.click(
            fn=_on_free_text,
            inputs=[tokens_tb, acts_tb],
            outputs=[viewer_html, stats_md],
        )
        save_btn.click(
            fn=save_current_record, inputs=[save_id_tb], outputs=[save_status_tb]
        )
        toggle_btn.click(fn=_on_toggle, outputs=[viewer_html, stats_md])
        hover_btn.click(
            fn=hover_token, inputs=[unit_num], outputs=[viewer_html, tooltip_tb]
        )
        leave_btn.click(fn=leave_token, outputs=[viewer_html, tooltip_tb])
        click_btn.click(
            fn=click_token, inputs=[unit_num], outputs=[viewer_html, status_tb]
        )

    return demo


def main(argv=None):
    argv = list(sys.argv[1:] if argv is None else argv)
    config_path = DEFAULT_CONFIG
    overrides = []
    for arg in argv:
        if arg.startswith("config="):
            config_path = arg.split("=", 1)[1]
        else:
            overrides.append(arg)

    cfg = load_dashboard_config(config_path, overrides)
    configure(cfg)
    demo = build_demo()
    demo.launch(server_name=cfg.server_name, server_port=cfg.server_port)


if __name__ == "__main__":
    main()
