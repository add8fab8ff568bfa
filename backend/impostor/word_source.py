from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)

WORD_MAX_LENGTH = 40

DEFAULT_SECRET_WORDS: tuple[str, ...] = (
    # Animales
    "Perro", "Gato", "León", "Tigre", "Elefante", "Jirafa", "Mono", "Zebra", "Delfín",
    "Ballena", "Tiburón", "Águila", "Búho", "Pinguino", "Loro", "Tortuga", "Serpiente",
    "Cocodrilo", "Mariposa", "Abeja", "Hormiga", "Araña", "Conejo", "Ratón", "Caballo",
    # Naturaleza
    "Árbol", "Flor", "Rosa", "Playa", "Montaña", "Río", "Lago", "Océano", "Bosque",
    "Desierto", "Volcán", "Cascada", "Isla", "Valle", "Selva", "Pradera", "Cueva", "Roca",
    "Arena", "Hielo",
    # Clima y astronomía
    "Luna", "Sol", "Estrella", "Planeta", "Cometa", "Lluvia", "Nieve", "Viento", "Tormenta",
    "Rayo", "Arcoíris", "Nube", "Niebla", "Granizo", "Eclipse",
    # Comida y bebida
    "Pizza", "Hamburguesa", "Café", "Té", "Jugo", "Agua", "Leche", "Pan", "Arroz", "Pasta",
    "Sopa", "Ensalada", "Helado", "Chocolate", "Pastel", "Galleta", "Queso", "Huevo", "Carne",
    "Pescado", "Fruta", "Verdura", "Manzana", "Banana", "Naranja",
    # Lugares
    "Casa", "Escuela", "Hospital", "Restaurante", "Cine", "Parque", "Museo", "Biblioteca",
    "Tienda", "Mercado", "Aeropuerto", "Estación", "Hotel", "Iglesia", "Teatro", "Estadio",
    "Banco", "Oficina", "Universidad", "Gimnasio",
    # Transporte
    "Coche", "Avión", "Barco", "Tren", "Bicicleta", "Moto", "Autobús", "Camión",
    "Helicóptero", "Submarino", "Cohete", "Patineta", "Scooter", "Taxi", "Ambulancia",
    # Tecnología
    "Teléfono", "Computadora", "Tablet", "Reloj", "Cámara", "Televisión", "Radio",
    "Micrófono", "Audífonos", "Robot", "Dron", "Internet", "Email", "Video", "Aplicación",
    # Deportes y actividades
    "Fútbol", "Basketball", "Tenis", "Voleibol", "Béisbol", "Golf", "Natación", "Atletismo",
    "Ciclismo", "Boxeo", "Karate", "Yoga", "Baile", "Correr", "Escalar", "Surf", "Esquí",
    "Patinaje", "Gimnasia", "Pesca",
    # Arte y música
    "Música", "Guitarra", "Piano", "Violín", "Batería", "Flauta", "Trompeta", "Canción",
    "Coro", "Pintura", "Dibujo", "Escultura", "Fotografía", "Danza", "Opera", "Poesía",
    "Novela", "Arte",
    # Objetos cotidianos
    "Libro", "Lápiz", "Papel", "Mesa", "Silla", "Cama", "Puerta", "Ventana", "Espejo",
    "Lámpara", "Llave", "Bolso", "Zapato", "Sombrero", "Paraguas", "Maleta", "Botella",
    "Vaso", "Plato",
    # Emociones y conceptos
    "Amor", "Amistad", "Familia", "Felicidad", "Tristeza", "Miedo", "Sorpresa", "Ira", "Paz",
    "Guerra", "Libertad", "Justicia", "Verdad", "Mentira", "Sueño",
    # Profesiones
    "Médico", "Maestro", "Ingeniero", "Chef", "Piloto", "Bombero", "Policía", "Artista",
    "Músico", "Escritor", "Científico", "Abogado", "Arquitecto", "Veterinario", "Fotógrafo",
    # Varios
    "Trabajo", "Viaje", "Fiesta", "Cocina", "Jardín", "Juego", "Historia", "Futuro", "Pasado",
    "Presente",
)


def sanitize_words(raw_words: Iterable[Any]) -> tuple[str, ...]:
    cleaned = (str(word or "").strip()[:WORD_MAX_LENGTH] for word in raw_words)
    return tuple(dict.fromkeys(word for word in cleaned if word))


def load_word_catalog(path: str | Path) -> tuple[str, ...]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("words")
    if not isinstance(payload, list):
        raise RuntimeError(f"{path} must contain a JSON array of words or a 'words' array")

    words = sanitize_words(payload)
    if not words:
        raise RuntimeError(f"No valid words were loaded from {path}")
    return words


class WordSource:
    """Supplies secret words from a fixed catalog."""

    def __init__(self, words: Iterable[str] = DEFAULT_SECRET_WORDS, rng: random.Random | None = None) -> None:
        self.words = sanitize_words(words)
        if not self.words:
            raise ValueError("WordSource needs at least one word")
        self._rng = rng or random.Random()

    def random_word(self) -> str:
        return self._rng.choice(self.words)

    @classmethod
    def from_settings(cls, words_file: str | None) -> "WordSource":
        if not words_file:
            return cls()
        words = load_word_catalog(words_file)
        logger.info("Loaded %d secret words from %s", len(words), words_file)
        return cls(words)
