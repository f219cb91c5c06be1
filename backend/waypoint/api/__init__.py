from flask import request


def _as_list(value):
    values = value if isinstance(value, list) else [value]
    out = []
    for v in values:
        if isinstance(v, bool):
            out.append('true' if v else 'false')
        elif v is None:
            out.append('')
        else:
            out.append(str(v))
    return out


def form_input() -> dict:
    """Request input as a ``{key: [values]}`` multi-dict, from a form or JSON body."""
    if request.form:
        return request.form.to_dict(flat=False)
    data = request.get_json(silent=True) or {}
    return {key: _as_list(value) for key, value in data.items()}
