"""
Render components, one module per chart family.

Each module exposes the component (parse/convert, runs in the service) and a
`render` function (runs on the rendering surface).
"""
