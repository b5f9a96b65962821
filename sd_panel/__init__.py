"""
SD Panel core: drives a Stable Diffusion WebUI backend from an image
editor selection and imports the results as masked layers.
"""

__version__ = "0.3.0"
